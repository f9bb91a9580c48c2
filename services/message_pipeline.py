"""
Message pipeline: validate, persist, fan out, then track delivery status.

Status only moves sent -> delivered -> read. The ``delivered`` step is a
fixed timer started once the message is persisted and handed to the
broadcaster; it stands in for a transport acknowledgment and only holds
for single-process fan-out.
"""
import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from domain import events
from domain.errors import PersistenceError
from domain.events import Outgoing
from domain.message.message import ChatMessage
from domain.message.types import ContentKind
from domain.message.value_objects import MessageStatus, build_content
from domain.session.chat_session import ChatSession, ParticipantRole
from repositories.message import MessageRepository
from services.notification import Notifier
from services.session_lifecycle import SessionLifecycle

logger = logging.getLogger(__name__)

Publisher = Callable[[Iterable[Outgoing]], None]


class MessagePipeline:
    def __init__(self,
                 lifecycle: SessionLifecycle,
                 repository: MessageRepository,
                 publish: Publisher,
                 notifier: Optional[Notifier] = None,
                 delivered_delay: float = 0.1):
        self._lifecycle = lifecycle
        self._repository = repository
        self._publish = publish
        self._notifier = notifier
        self._delivered_delay = delivered_delay
        self._messages: Dict[str, Dict[int, ChatMessage]] = {}
        self._last_id: Dict[str, int] = {}
        self._timers: Dict[Tuple[str, int], asyncio.TimerHandle] = {}
        self._tasks: set = set()
        lifecycle.add_terminal_listener(self.discard_room)

    # ----------------
    # Submit
    # ----------------
    async def submit(self,
                     room_id: str,
                     sender: ParticipantRole,
                     sender_id: str,
                     kind: ContentKind,
                     text: Optional[str] = None,
                     file_data: Optional[dict] = None) -> List[Outgoing]:
        session = self._lifecycle.require_active(room_id, "send a message in")
        self._check_sender(session, sender, sender_id)
        content = build_content(kind, text, file_data)

        message = ChatMessage(
            message_id=self._next_id(room_id),
            room_id=room_id,
            sender=sender,
            sender_id=sender_id,
            content=content,
        )

        try:
            await self._repository.save(message.to_dict())
        except PersistenceError:
            logger.exception("Message %s in %s could not be saved", message.message_id, room_id)
            return [events.reply(events.MESSAGE_ERROR, {
                "error": "Failed to save message",
                "roomId": room_id,
                "messageId": message.message_id,
            })]

        self._messages.setdefault(room_id, {})[message.message_id] = message
        await self._lifecycle.record_message(room_id)
        logger.info("%s message in room %s from %s", kind.value, room_id, sender.value)

        # The session may have closed while the save was in flight.
        session = self._lifecycle.get(room_id) or session
        broadcast = self._lifecycle.fan_out(session, events.NEW_MESSAGE, message.to_event())
        self._schedule_delivered(room_id, message.message_id)

        if self._notifier:
            self._notifier.notify("new-message", {
                "roomId": room_id,
                "sender": sender.value,
                "messageType": kind.value,
            })
        return [broadcast] if broadcast else []

    # ----------------
    # Status
    # ----------------
    async def mark_read(self, room_id: str, message_id: int) -> List[Outgoing]:
        """Final transition to ``read``. A message already read is left alone."""
        session = self._lifecycle.require_live(room_id, "mark a message read in")
        message = self._messages.get(room_id, {}).get(message_id)
        if message is not None and message.status is MessageStatus.READ:
            return []

        updated = await self._repository.advance_status(
            room_id, message_id, (MessageStatus.SENT, MessageStatus.DELIVERED), MessageStatus.READ
        )
        if not updated:
            logger.debug("Message %s in %s not advanced to read", message_id, room_id)
            return []

        self._cancel_timer(room_id, message_id)
        if message is not None:
            message.advance(MessageStatus.READ)
        logger.info("Message %s read in %s", message_id, room_id)
        update = self._lifecycle.fan_out(session, events.MESSAGE_STATUS_UPDATE, {
            "messageId": message_id,
            "status": MessageStatus.READ.value,
        })
        return [update] if update else []

    async def mark_many_read(self, room_id: str, message_ids: Iterable[int]) -> List[Outgoing]:
        outgoing = []
        for message_id in message_ids:
            outgoing.extend(await self.mark_read(room_id, message_id))
        return outgoing

    def history(self, room_id: str) -> List[ChatMessage]:
        return sorted(self._messages.get(room_id, {}).values(), key=lambda m: m.message_id)

    def discard_room(self, room_id: str) -> None:
        """Drops in-memory state for a closed room."""
        for key in [k for k in self._timers if k[0] == room_id]:
            self._cancel_timer(*key)
        self._messages.pop(room_id, None)
        self._last_id.pop(room_id, None)

    # ----------------
    # Helpers
    # ----------------
    def _next_id(self, room_id: str) -> int:
        """Millisecond clock, bumped so ids stay strictly increasing per room."""
        candidate = int(time.time() * 1000)
        last = self._last_id.get(room_id, 0)
        message_id = candidate if candidate > last else last + 1
        self._last_id[room_id] = message_id
        return message_id

    def _check_sender(self, session: ChatSession, sender: ParticipantRole, sender_id: str) -> None:
        if sender is ParticipantRole.CUSTOMER and sender_id != session.customer_id:
            raise ValueError(f"{sender_id} is not the customer of {session.room_id}")
        if sender is ParticipantRole.WORKER and sender_id != session.worker_id:
            raise ValueError(f"{sender_id} is not the worker of {session.room_id}")

    def _schedule_delivered(self, room_id: str, message_id: int) -> None:
        loop = asyncio.get_running_loop()
        self._cancel_timer(room_id, message_id)
        self._timers[(room_id, message_id)] = loop.call_later(
            self._delivered_delay, self._on_delivered_timer, room_id, message_id
        )

    def _on_delivered_timer(self, room_id: str, message_id: int) -> None:
        self._timers.pop((room_id, message_id), None)
        task = asyncio.ensure_future(self._mark_delivered(room_id, message_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _mark_delivered(self, room_id: str, message_id: int) -> None:
        message = self._messages.get(room_id, {}).get(message_id)
        if message is None or message.status is not MessageStatus.SENT:
            return
        try:
            updated = await self._repository.advance_status(
                room_id, message_id, (MessageStatus.SENT,), MessageStatus.DELIVERED
            )
        except PersistenceError:
            logger.exception("Could not mark message %s delivered", message_id)
            return
        if not updated or not message.advance(MessageStatus.DELIVERED):
            return

        session = self._lifecycle.get(room_id)
        if session is None:
            return
        update = self._lifecycle.fan_out(session, events.MESSAGE_STATUS_UPDATE, {
            "messageId": message_id,
            "status": MessageStatus.DELIVERED.value,
        })
        if update:
            self._publish([update])

    def _cancel_timer(self, room_id: str, message_id: int) -> None:
        handle = self._timers.pop((room_id, message_id), None)
        if handle:
            handle.cancel()
