"""
Session (room) state machine.

    created --join x2--> active --end--> ended
       |                   |
       +------abandon------+-----------> abandoned

Status checks and status writes on the in-memory session happen in the
same synchronous block; the store is written with a conditional update
before any event about the change is returned to the caller.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from domain import events
from domain.errors import ConflictError, InvalidSessionState, PersistenceError
from domain.events import Outgoing
from domain.session.chat_session import ChatSession, SessionStatus, ParticipantRole, room_id_for
from repositories.session import SessionRepository
from services.presence_registry import PresenceRegistry, CustomerRegistry

logger = logging.getLogger(__name__)

CHAT_ENDED_BY_WORKER = "Chat session has been ended by the agent. Thank you!"
CHAT_ENDED_BY_CUSTOMER = "Chat session has been ended by the customer."


class SessionLifecycle:
    def __init__(self,
                 repository: SessionRepository,
                 presence: PresenceRegistry,
                 customers: CustomerRegistry):
        self._repository = repository
        self._presence = presence
        self._customers = customers
        self._sessions: Dict[str, ChatSession] = {}
        self._terminal_listeners: List[Callable[[str], None]] = []

    def add_terminal_listener(self, listener: Callable[[str], None]) -> None:
        """``listener(room_id)`` runs once a session reaches a terminal state."""
        self._terminal_listeners.append(listener)

    # ----------------
    # Reads
    # ----------------
    def get(self, room_id: str) -> Optional[ChatSession]:
        return self._sessions.get(room_id)

    def live_sessions(self) -> List[ChatSession]:
        return list(self._sessions.values())

    def live_session_for_worker(self, worker_id: str) -> Optional[ChatSession]:
        return next((s for s in self._sessions.values() if s.worker_id == worker_id), None)

    def require(self, room_id: str, operation: str, allowed: Iterable[SessionStatus]) -> ChatSession:
        session = self._sessions.get(room_id)
        if session is None:
            raise InvalidSessionState(room_id, None, operation)
        if session.status not in allowed:
            raise InvalidSessionState(room_id, session.status.value, operation)
        return session

    def require_active(self, room_id: str, operation: str) -> ChatSession:
        return self.require(room_id, operation, (SessionStatus.ACTIVE,))

    def require_live(self, room_id: str, operation: str) -> ChatSession:
        return self.require(room_id, operation, (SessionStatus.CREATED, SessionStatus.ACTIVE))

    # ----------------
    # Recipients
    # ----------------
    def worker_connection(self, session: ChatSession) -> Optional[str]:
        return self._presence.lookup_transport(session.worker_id)

    def customer_connection(self, session: ChatSession) -> Optional[str]:
        return self._customers.lookup_transport(session.customer_id)

    def party_connection(self, session: ChatSession, role: ParticipantRole) -> Optional[str]:
        if role is ParticipantRole.WORKER:
            return self.worker_connection(session)
        return self.customer_connection(session)

    def fan_out(self, session: ChatSession, event: str, data: dict) -> Optional[Outgoing]:
        """Event for every transport joined to the room."""
        members = []
        if session.customer_joined:
            members.append(self.customer_connection(session))
        if session.worker_joined:
            members.append(self.worker_connection(session))
        return events.send(members, event, data)

    # ----------------
    # Transitions
    # ----------------
    async def create(self, customer_id: str, worker_id: str, worker_name: str) -> ChatSession:
        """Writes the session in ``created``. Only the matching engine calls this."""
        session = ChatSession(
            room_id=room_id_for(customer_id, worker_id),
            customer_id=customer_id,
            worker_id=worker_id,
            worker_name=worker_name,
        )
        if session.room_id in self._sessions:
            raise ConflictError(f"Session {session.room_id} already exists")
        await self._repository.create_session(session.to_dict())
        self._sessions[session.room_id] = session
        logger.info("Session %s created for customer %s and worker %s", session.room_id, customer_id, worker_id)
        return session

    async def join(self, room_id: str, role: ParticipantRole) -> ChatSession:
        session = self.require_live(room_id, f"join as {role.value}")
        if role is ParticipantRole.CUSTOMER:
            session.customer_joined = True
        elif role is ParticipantRole.WORKER:
            session.worker_joined = True
        else:
            raise ValueError("system cannot join a room")

        if session.status is SessionStatus.CREATED and session.customer_joined and session.worker_joined:
            session.status = SessionStatus.ACTIVE
            stored = await self._repository.transition(
                room_id, (SessionStatus.CREATED,), {"status": SessionStatus.ACTIVE.value}
            )
            if stored is None:
                logger.warning("Store did not hold session %s as created", room_id)
            logger.info("Session %s is now ACTIVE", room_id)
        return session

    async def end(self, room_id: str, initiating_role: ParticipantRole) -> List[Outgoing]:
        """Graceful close; valid only from ``active``."""
        session = self.require_active(room_id, "end")
        await self._close(session, SessionStatus.ENDED)

        message = CHAT_ENDED_BY_WORKER if initiating_role is ParticipantRole.WORKER else CHAT_ENDED_BY_CUSTOMER
        notice = self.fan_out(session, events.CHAT_ENDED, {"message": message, "roomId": room_id})
        self._finish(session)
        return [notice] if notice else []

    async def abandon(self, room_id: str) -> ChatSession:
        """Close after a disconnect. The caller notifies the remaining party."""
        session = self.require_live(room_id, "abandon")
        await self._close(session, SessionStatus.ABANDONED)
        self._finish(session)
        return session

    async def record_message(self, room_id: str) -> None:
        session = self._sessions.get(room_id)
        if session:
            session.message_count += 1
        try:
            await self._repository.increment_message_count(room_id)
        except PersistenceError:
            logger.exception("Could not update message count for %s", room_id)

    # ----------------
    # Helpers
    # ----------------
    async def _close(self, session: ChatSession, status: SessionStatus) -> None:
        previous = session.status
        session.status = status
        session.ended_at = datetime.now(timezone.utc)
        try:
            stored = await self._repository.transition(
                session.room_id,
                (SessionStatus.CREATED, SessionStatus.ACTIVE),
                {"status": status.value, "ended_at": session.ended_at},
            )
        except PersistenceError:
            session.status = previous
            session.ended_at = None
            raise
        if stored is None:
            logger.warning("Store already held session %s as closed", session.room_id)

        await self._release_worker(session)
        logger.info("Session %s %s (was %s)", session.room_id, status.value, previous.value)

    async def _release_worker(self, session: ChatSession) -> None:
        try:
            await self._presence.mark_available(session.worker_id, session.room_id)
        except ConflictError as e:
            # Worker already offline or reassigned; nothing to release.
            logger.info("Worker %s not released for %s: %s", session.worker_id, session.room_id, e)

    def _finish(self, session: ChatSession) -> None:
        self._sessions.pop(session.room_id, None)
        self._customers.drop(session.customer_id)
        for listener in self._terminal_listeners:
            try:
                listener(session.room_id)
            except Exception:
                logger.exception("Terminal listener failed for %s", session.room_id)
