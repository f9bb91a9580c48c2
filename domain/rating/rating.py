from pydantic import BaseModel, Field
from datetime import datetime, timezone


class ChatRating(BaseModel):
    room_id: str
    customer_id: str
    worker_id: str
    worker_name: str
    rating: int = Field(..., ge=1, le=5)
    feedback: str = Field(default="", max_length=500)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return self.model_dump(mode="python")
