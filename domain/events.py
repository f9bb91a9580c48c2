"""
Wire-level event names, the outgoing event envelope and the per-transport
connection context.

Handlers never write to sockets themselves: they return ``Outgoing``
values and the gateway delivers them. Recipients are resolved to
connection ids when the event is built, so an event still reaches a room
whose in-memory state was torn down by the same handler.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

# Inbound
WORKER_JOIN = "worker-join"
CUSTOMER_JOIN = "customer-join"
SEND_MESSAGE = "send-message"
TYPING_START = "typing-start"
TYPING_STOP = "typing-stop"
MESSAGE_READ = "message-read"
MESSAGES_READ = "messages-read"
END_CHAT = "end-chat"

# Outbound
NEW_MESSAGE = "new-message"
MESSAGE_STATUS_UPDATE = "message-status-update"
MESSAGE_ERROR = "message-error"
USER_TYPING = "user-typing"
CHAT_ENDED = "chat-ended"
CUSTOMER_CONNECTED = "customer-connected"
CUSTOMER_DISCONNECTED = "customer-disconnected"
WORKER_DISCONNECTED = "worker-disconnected"
WORKER_STATUS = "worker-status"
NEW_CALLBACK = "new-callback"
CHAT_RATED = "chat-rated"
ERROR = "error"

# Placeholder for "the transport that sent the inbound event"
ORIGIN = "__origin__"


@dataclass(frozen=True)
class Outgoing:
    event: str
    data: Dict[str, Any] = field(default_factory=dict)
    connections: Tuple[str, ...] = ()

    def frame(self) -> Dict[str, Any]:
        return {"event": self.event, "data": self.data}

    def resolve(self, origin: Optional[str]) -> Tuple[str, ...]:
        return tuple(origin if c == ORIGIN else c for c in self.connections if c and (c != ORIGIN or origin))


def send(connections: Iterable[Optional[str]], event: str, data: Dict[str, Any]) -> Optional[Outgoing]:
    """Builds an event for the given connections, or None when nobody is reachable."""
    targets = tuple(dict.fromkeys(c for c in connections if c))
    if not targets:
        return None
    return Outgoing(event, data, targets)


def reply(event: str, data: Dict[str, Any]) -> Outgoing:
    return Outgoing(event, data, (ORIGIN,))


@dataclass
class ConnectionContext:
    """What the broker knows about one open transport."""
    connection_id: str
    authenticated_worker_id: Optional[str] = None
    worker_id: Optional[str] = None
    customer_id: Optional[str] = None
    room_id: Optional[str] = None
