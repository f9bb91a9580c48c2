from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone
from enum import Enum


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    ENDED = "ended"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.ENDED, SessionStatus.ABANDONED)


class ParticipantRole(str, Enum):
    CUSTOMER = "customer"
    WORKER = "worker"
    SYSTEM = "system"

    @property
    def counterpart(self) -> "ParticipantRole":
        if self is ParticipantRole.CUSTOMER:
            return ParticipantRole.WORKER
        if self is ParticipantRole.WORKER:
            return ParticipantRole.CUSTOMER
        raise ValueError("system has no counterpart")


def room_id_for(customer_id: str, worker_id: str) -> str:
    """Room ids are derived from the pairing so a retry lands on the same room."""
    return f"room_{customer_id}_{worker_id}"


class ChatSession(BaseModel):
    room_id: str
    customer_id: str
    worker_id: str
    worker_name: str
    status: SessionStatus = SessionStatus.CREATED
    customer_joined: bool = False
    worker_joined: bool = False
    created_at: datetime = Field(default_factory=_now)
    ended_at: Optional[datetime] = None
    message_count: int = 0

    def is_live(self) -> bool:
        return not self.status.is_terminal

    def to_dict(self) -> dict:
        data = self.model_dump(mode="python")
        data["status"] = self.status.value
        return data

    def public_dict(self) -> dict:
        return {
            "roomId": self.room_id,
            "customerId": self.customer_id,
            "workerId": self.worker_id,
            "workerName": self.worker_name,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "endedAt": self.ended_at.isoformat() if self.ended_at else None,
            "messageCount": self.message_count,
        }
