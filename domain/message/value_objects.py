"""
Value objects for chat messages.
"""
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any, Union
from enum import Enum

from domain.message.types import ContentKind


class MessageStatus(str, Enum):
    """Delivery status. Only ever moves forward."""
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def can_advance_to(self, other: "MessageStatus") -> bool:
        return other.rank > self.rank


_STATUS_RANK = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.READ: 2,
}


@dataclass(frozen=True)
class TextContent:
    body: str
    kind = ContentKind.TEXT

    def attachment(self) -> Optional[Dict[str, Any]]:
        return None


@dataclass(frozen=True)
class MediaContent:
    """Attachment descriptor returned by the blob store."""
    url: str
    name: Optional[str] = None
    size: Optional[int] = None
    mime: Optional[str] = None
    caption: str = ""

    def attachment(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("caption", None)
        return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class ImageContent(MediaContent):
    kind = ContentKind.IMAGE


@dataclass(frozen=True)
class FileContent(MediaContent):
    kind = ContentKind.FILE


@dataclass(frozen=True)
class VoiceContent(MediaContent):
    duration: float = 0
    kind = ContentKind.VOICE


Content = Union[TextContent, ImageContent, FileContent, VoiceContent]

_MEDIA_TYPES = {
    ContentKind.IMAGE: ImageContent,
    ContentKind.FILE: FileContent,
    ContentKind.VOICE: VoiceContent,
}


def build_content(kind: ContentKind, text: Optional[str], file_data: Optional[Dict[str, Any]]) -> Content:
    """Builds the content variant for ``kind`` from a wire payload.

    Media variants require ``file_data`` with at least a ``url``; the blob
    store has already validated size and type.
    """
    if kind is ContentKind.TEXT:
        if not text or not str(text).strip():
            raise ValueError("text message requires a non-empty body")
        return TextContent(body=str(text))

    if not file_data or not (file_data.get("url") or file_data.get("secure_url")):
        raise ValueError(f"{kind.value} message requires fileData with a url")

    fields = dict(
        url=file_data.get("url") or file_data.get("secure_url"),
        name=file_data.get("name") or file_data.get("originalname"),
        size=file_data.get("size"),
        mime=file_data.get("mime") or file_data.get("mimetype"),
        caption=text or "",
    )
    if kind is ContentKind.VOICE:
        fields["duration"] = float(file_data.get("duration") or 0)
    return _MEDIA_TYPES[kind](**fields)


def content_text(content: Content) -> str:
    return content.body if isinstance(content, TextContent) else content.caption
