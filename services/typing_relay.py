"""
Typing relay. Flags go to the other party only and are never persisted.

Each (room, role) keeps an expiry timer: a fresh ``true`` restarts it, a
``false`` cancels it, and when it fires the counterpart gets ``false``.
"""
import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Tuple

from domain import events
from domain.events import Outgoing
from domain.session.chat_session import ParticipantRole
from services.presence_registry import CustomerRegistry
from services.session_lifecycle import SessionLifecycle

logger = logging.getLogger(__name__)

Publisher = Callable[[Iterable[Outgoing]], None]


class TypingRelay:
    def __init__(self,
                 lifecycle: SessionLifecycle,
                 customers: CustomerRegistry,
                 publish: Publisher,
                 expiry_seconds: float = 5.0):
        self._lifecycle = lifecycle
        self._customers = customers
        self._publish = publish
        self._expiry = expiry_seconds
        self._timers: Dict[Tuple[str, ParticipantRole], asyncio.TimerHandle] = {}
        lifecycle.add_terminal_listener(self.discard_room)

    def set_typing(self, room_id: str, role: ParticipantRole, is_typing: bool) -> List[Outgoing]:
        session = self._lifecycle.require_live(room_id, "relay typing in")
        if role is ParticipantRole.CUSTOMER:
            self._customers.touch(session.customer_id)

        self._cancel(room_id, role)
        if is_typing:
            self._timers[(room_id, role)] = asyncio.get_running_loop().call_later(
                self._expiry, self._expire, room_id, role
            )

        outgoing = self._signal(room_id, role, is_typing)
        return [outgoing] if outgoing else []

    def is_typing(self, room_id: str, role: ParticipantRole) -> bool:
        return (room_id, role) in self._timers

    def discard_room(self, room_id: str) -> None:
        for key in [k for k in self._timers if k[0] == room_id]:
            self._cancel(*key)

    def _signal(self, room_id: str, role: ParticipantRole, is_typing: bool):
        session = self._lifecycle.get(room_id)
        if session is None:
            return None
        target = self._lifecycle.party_connection(session, role.counterpart)
        return events.send([target], events.USER_TYPING, {"sender": role.value, "typing": is_typing})

    def _expire(self, room_id: str, role: ParticipantRole) -> None:
        self._timers.pop((room_id, role), None)
        logger.debug("Typing flag for %s in %s expired", role.value, room_id)
        outgoing = self._signal(room_id, role, False)
        if outgoing:
            self._publish([outgoing])

    def _cancel(self, room_id: str, role: ParticipantRole) -> None:
        handle = self._timers.pop((room_id, role), None)
        if handle:
            handle.cancel()
