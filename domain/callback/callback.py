from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone
from enum import Enum


class CallbackStatus(str, Enum):
    PENDING = "pending"
    CONTACTED = "contacted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CallbackPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CallbackRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=1, max_length=20)
    email: Optional[str] = Field(default=None, max_length=100)
    message: Optional[str] = Field(default=None, max_length=1000)
    status: CallbackStatus = CallbackStatus.PENDING
    priority: CallbackPriority = CallbackPriority.MEDIUM
    assigned_worker: Optional[str] = None
    requested_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    contacted_at: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=500)

    def to_dict(self) -> dict:
        data = self.model_dump(mode="python")
        data["status"] = self.status.value
        data["priority"] = self.priority.value
        return data
