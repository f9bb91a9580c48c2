"""
Dispatch table for inbound WebSocket events.

Every handler takes (broker, ctx, payload) and returns the outgoing events;
nothing here writes to a socket.
"""
import logging
from typing import Awaitable, Callable, Dict, List

from domain import events
from domain.errors import ConflictError, InvalidSessionState, PersistenceError
from domain.events import ConnectionContext, Outgoing
from domain.message.types import ContentKind
from domain.presence.customer import CustomerPresence
from domain.session.chat_session import ParticipantRole
from services.broker import SessionBroker

logger = logging.getLogger(__name__)

Handler = Callable[[SessionBroker, ConnectionContext, dict], Awaitable[List[Outgoing]]]


def _require(payload: dict, *keys: str) -> list:
    missing = [k for k in keys if payload.get(k) in (None, "")]
    if missing:
        raise ValueError(f"Missing fields: {', '.join(missing)}")
    return [payload[k] for k in keys]


def _room_id(payload: dict) -> str:
    (room_id,) = _require(payload, "roomId")
    if not isinstance(room_id, str):
        raise TypeError("roomId must be a string")
    return room_id


def _role_of(ctx: ConnectionContext, claimed: str) -> ParticipantRole:
    """The role a connection may act as; it must match what it claims."""
    role = ParticipantRole(claimed)
    if role is ParticipantRole.WORKER and ctx.worker_id:
        return role
    if role is ParticipantRole.CUSTOMER and ctx.customer_id:
        return role
    raise ValueError(f"Connection has not joined as {claimed}")


def _role_of_connection(ctx: ConnectionContext) -> ParticipantRole:
    if ctx.worker_id:
        return ParticipantRole.WORKER
    if ctx.customer_id:
        return ParticipantRole.CUSTOMER
    raise ValueError("Connection has not joined a room")


def _require_member(broker: SessionBroker, ctx: ConnectionContext, room_id: str, role: ParticipantRole) -> None:
    """The connection must be the party it acts as in this room."""
    session = broker.lifecycle.get(room_id)
    if session is None:
        # Unknown or closed; the service raises InvalidSessionState.
        return
    if role is ParticipantRole.WORKER:
        member = ctx.worker_id is not None and session.worker_id == ctx.worker_id
    else:
        member = ctx.customer_id is not None and session.customer_id == ctx.customer_id
    if not member:
        raise PermissionError(f"Connection is not the {role.value} of room {room_id}")


async def worker_join(broker: SessionBroker, ctx: ConnectionContext, p: dict) -> List[Outgoing]:
    (worker_id,) = _require(p, "workerId")
    worker_id = str(worker_id)
    if ctx.authenticated_worker_id != worker_id:
        raise PermissionError("Token does not belong to this worker")

    worker = await broker.worker_repo.get_by_id(worker_id)
    if not worker:
        raise ValueError(f"Unknown worker {worker_id}")

    entry = await broker.presence.register_worker_connection(worker_id, worker["username"], ctx.connection_id)
    ctx.worker_id = worker_id

    # A reconnecting worker that still holds a room re-joins it.
    if entry.session_id and broker.lifecycle.get(entry.session_id):
        await broker.lifecycle.join(entry.session_id, ParticipantRole.WORKER)

    return [events.reply(events.WORKER_STATUS, {
        "status": entry.status.value,
        "currentSession": entry.session_id,
        "queueLength": len(broker.customers),
    })]


async def customer_join(broker: SessionBroker, ctx: ConnectionContext, p: dict) -> List[Outgoing]:
    (customer_id,) = _require(p, "customerId")
    room_id = _room_id(p)
    session = broker.lifecycle.require_live(room_id, "join")
    if session.customer_id != customer_id:
        raise PermissionError("Customer does not belong to this room")

    if broker.customers.get(customer_id) is None:
        broker.customers.add(CustomerPresence(
            customer_id=customer_id,
            room_id=room_id,
            worker_id=session.worker_id,
            worker_name=session.worker_name,
        ))
    broker.customers.bind(customer_id, ctx.connection_id)
    ctx.customer_id, ctx.room_id = customer_id, room_id
    logger.info("Customer %s joined room %s", customer_id, room_id)

    await broker.lifecycle.join(room_id, ParticipantRole.CUSTOMER)
    worker_connection = broker.lifecycle.worker_connection(session)
    if worker_connection:
        await broker.lifecycle.join(room_id, ParticipantRole.WORKER)

    notice = events.send([worker_connection], events.CUSTOMER_CONNECTED, {
        "customerId": customer_id,
        "roomId": room_id,
    })
    return [notice] if notice else []


async def send_message(broker: SessionBroker, ctx: ConnectionContext, p: dict) -> List[Outgoing]:
    sender, sender_id = _require(p, "sender", "senderId")
    room_id = _room_id(p)
    role = _role_of(ctx, sender)
    own_id = ctx.worker_id if role is ParticipantRole.WORKER else ctx.customer_id
    if str(sender_id) != own_id:
        raise PermissionError("senderId does not match this connection")
    if role is ParticipantRole.CUSTOMER:
        broker.customers.touch(ctx.customer_id)
    return await broker.pipeline.submit(
        room_id,
        role,
        str(sender_id),
        ContentKind(p.get("messageType") or ContentKind.TEXT.value),
        text=p.get("message"),
        file_data=p.get("fileData"),
    )


async def typing_start(broker: SessionBroker, ctx: ConnectionContext, p: dict) -> List[Outgoing]:
    (sender,) = _require(p, "sender")
    room_id = _room_id(p)
    role = _role_of(ctx, sender)
    _require_member(broker, ctx, room_id, role)
    return broker.typing.set_typing(room_id, role, True)


async def typing_stop(broker: SessionBroker, ctx: ConnectionContext, p: dict) -> List[Outgoing]:
    (sender,) = _require(p, "sender")
    room_id = _room_id(p)
    role = _role_of(ctx, sender)
    _require_member(broker, ctx, room_id, role)
    return broker.typing.set_typing(room_id, role, False)


async def message_read(broker: SessionBroker, ctx: ConnectionContext, p: dict) -> List[Outgoing]:
    (message_id,) = _require(p, "messageId")
    room_id = _room_id(p)
    _require_member(broker, ctx, room_id, _role_of_connection(ctx))
    return await broker.pipeline.mark_read(room_id, int(message_id))


async def messages_read(broker: SessionBroker, ctx: ConnectionContext, p: dict) -> List[Outgoing]:
    (message_ids,) = _require(p, "messageIds")
    room_id = _room_id(p)
    if not isinstance(message_ids, list):
        raise TypeError("messageIds must be a list")
    _require_member(broker, ctx, room_id, _role_of_connection(ctx))
    logger.info("Marking %d messages read in %s", len(message_ids), room_id)
    return await broker.pipeline.mark_many_read(room_id, [int(m) for m in message_ids])


async def end_chat(broker: SessionBroker, ctx: ConnectionContext, p: dict) -> List[Outgoing]:
    room_id = _room_id(p)
    role = _role_of_connection(ctx)
    if role is ParticipantRole.WORKER and p.get("workerId") not in (None, ctx.worker_id):
        raise PermissionError("Worker cannot end another worker's chat")
    _require_member(broker, ctx, room_id, role)
    logger.info("%s ended chat in room %s", role.value, room_id)
    return await broker.lifecycle.end(room_id, role)


HANDLERS: Dict[str, Handler] = {
    events.WORKER_JOIN: worker_join,
    events.CUSTOMER_JOIN: customer_join,
    events.SEND_MESSAGE: send_message,
    events.TYPING_START: typing_start,
    events.TYPING_STOP: typing_stop,
    events.MESSAGE_READ: message_read,
    events.MESSAGES_READ: messages_read,
    events.END_CHAT: end_chat,
}


async def dispatch(broker: SessionBroker, ctx: ConnectionContext, event: str, payload: dict) -> List[Outgoing]:
    handler = HANDLERS.get(event) if isinstance(event, str) else None
    if handler is None:
        logger.warning("Unknown event %s from %s", event, ctx.connection_id)
        return [events.reply(events.ERROR, {"error": f"Unknown event {event}"})]

    error_event = events.MESSAGE_ERROR if event == events.SEND_MESSAGE else events.ERROR
    try:
        return await handler(broker, ctx, payload or {})
    except InvalidSessionState as e:
        # The room is already gone for the other party; drop the event.
        logger.warning("Dropped %s: %s", event, e)
        return []
    except ConflictError as e:
        logger.warning("Conflict handling %s: %s", event, e)
        return [events.reply(error_event, {"error": str(e), "event": event})]
    except PersistenceError as e:
        logger.exception("Persistence failure handling %s", event)
        return [events.reply(error_event, {"error": "Could not save changes", "event": event})]
    except (ValueError, TypeError, PermissionError) as e:
        logger.info("Rejected %s from %s: %s", event, ctx.connection_id, e)
        return [events.reply(error_event, {"error": str(e), "event": event})]
