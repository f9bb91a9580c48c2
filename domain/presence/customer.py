from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CustomerPresence:
    """Ephemeral record of a customer with an open transport."""
    customer_id: str
    room_id: str
    worker_id: str
    worker_name: str
    joined_at: datetime = field(default_factory=_now)
    last_activity: datetime = field(default_factory=_now)

    def touch(self, now: datetime = None) -> None:
        self.last_activity = now or _now()

    def is_expired(self, window: timedelta, now: datetime = None) -> bool:
        return (now or _now()) - self.last_activity > window
