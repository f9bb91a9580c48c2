from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import re

import bcrypt


class WorkerStatus(str, Enum):
    OFFLINE = "offline"
    AVAILABLE = "available"
    BUSY = "busy"


@dataclass
class Worker:
    username: str = None
    password: str = None
    status: WorkerStatus = WorkerStatus.OFFLINE
    current_session: Optional[str] = None
    created_at: datetime = None
    last_active: datetime = None
    _id: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = WorkerStatus(self.status)
        now = datetime.now(timezone.utc)
        self.created_at = self.created_at or now
        self.last_active = self.last_active or now
        # Ensure password is hashed
        if self.password and not self.is_bcrypt_hash(self.password):
            self.password = self.hash_password(self.password)

    # Password helpers
    def password_matches(self, password: str) -> bool:
        """Verify if the provided password matches the stored hashed password."""
        if not self.password or password is None:
            return False
        return bcrypt.checkpw(password.encode('utf-8'), self.password.encode('utf-8'))

    def is_bcrypt_hash(self, s: str) -> bool:
        return bool(re.match(r'^\$2[aby]\$\d{2}\$.{53}$', s))

    def hash_password(self, password: str) -> str:
        """Hash a password using bcrypt."""
        salt = bcrypt.gensalt(rounds=10)
        hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
        return hashed.decode('utf-8')

    def to_dict(self):
        data = asdict(self)

        # Remove _id if None to allow MongoDB to generate it
        if data.get("_id") is None:
            data.pop("_id", None)

        data["status"] = self.status.value
        return data

    def public_dict(self) -> dict:
        """Worker view without the credential."""
        return {
            "id": self._id,
            "username": self.username,
            "status": self.status.value,
            "currentSession": self.current_session,
            "createdAt": self.created_at,
            "lastActive": self.last_active,
        }
