from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from datetime import datetime, timezone

from domain.message.types import ContentKind
from domain.message.value_objects import MessageStatus, Content, build_content, content_text
from domain.session.chat_session import ParticipantRole


@dataclass
class ChatMessage:
    message_id: int
    room_id: str
    sender: ParticipantRole
    sender_id: str
    content: Content
    status: MessageStatus = MessageStatus.SENT
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def kind(self) -> ContentKind:
        return self.content.kind

    def advance(self, status: MessageStatus) -> bool:
        """Moves the status forward. Returns False when it would not advance."""
        if not self.status.can_advance_to(status):
            return False
        self.status = status
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Document stored in the messages collection."""
        return {
            "message_id": self.message_id,
            "room_id": self.room_id,
            "sender": self.sender.value,
            "sender_id": self.sender_id,
            "message_type": self.kind.value,
            "message": content_text(self.content),
            "file_data": self.content.attachment(),
            "status": self.status.value,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, doc: Dict[str, Any]) -> "ChatMessage":
        kind = ContentKind(doc.get("message_type", "text"))
        return cls(
            message_id=int(doc["message_id"]),
            room_id=doc["room_id"],
            sender=ParticipantRole(doc["sender"]),
            sender_id=doc.get("sender_id"),
            content=build_content(kind, doc.get("message"), doc.get("file_data")),
            status=MessageStatus(doc.get("status", "sent")),
            timestamp=doc.get("timestamp") or datetime.now(timezone.utc),
        )

    def to_event(self) -> Dict[str, Any]:
        """Payload of the ``new-message`` event."""
        return {
            "id": self.message_id,
            "roomId": self.room_id,
            "message": content_text(self.content),
            "sender": self.sender.value,
            "senderId": self.sender_id,
            "messageType": self.kind.value,
            "fileData": self.content.attachment(),
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
        }
