"""
Reconciles presence and sessions when a transport goes away.

Reconnection never resumes a session on the server's initiative: a party
that comes back re-presents its room id through a fresh join.
"""
import logging
from datetime import datetime, timezone, timedelta
from typing import List, Optional

from domain import events
from domain.errors import BrokerError, InvalidSessionState
from domain.events import ConnectionContext, Outgoing
from domain.session.chat_session import ChatSession, SessionStatus
from services.presence_registry import PresenceRegistry, CustomerRegistry
from services.session_lifecycle import SessionLifecycle

logger = logging.getLogger(__name__)

WORKER_LEFT_MESSAGE = "The agent has disconnected. Please start a new chat."


class DisconnectHandler:
    def __init__(self,
                 presence: PresenceRegistry,
                 lifecycle: SessionLifecycle,
                 customers: CustomerRegistry,
                 join_timeout: timedelta = timedelta(minutes=2)):
        self._presence = presence
        self._lifecycle = lifecycle
        self._customers = customers
        self._join_timeout = join_timeout

    async def on_transport_lost(self, ctx: ConnectionContext, reason: str = "disconnect") -> List[Outgoing]:
        logger.info("Connection %s lost (%s)", ctx.connection_id, reason)
        outgoing: List[Outgoing] = []
        if ctx.worker_id:
            outgoing.extend(await self.worker_lost(ctx.worker_id, ctx.connection_id))
        if ctx.customer_id:
            outgoing.extend(await self.customer_lost(ctx.customer_id, ctx.connection_id))
        return outgoing

    async def worker_lost(self, worker_id: str, handle: Optional[str] = None) -> List[Outgoing]:
        # Resolve the counterpart before presence forgets the transport.
        held = self._presence.get(worker_id)
        if held is None or (handle is not None and held.handle != handle):
            return []

        session_id = await self._presence.unregister(worker_id, handle)
        session = self._lifecycle.get(session_id) if session_id else None
        session = session or self._lifecycle.live_session_for_worker(worker_id)
        if session is None:
            return []

        customer_connection = self._lifecycle.customer_connection(session)
        try:
            await self._lifecycle.abandon(session.room_id)
        except InvalidSessionState as e:
            logger.info("Session already closed on worker disconnect: %s", e)
            return []

        return [o for o in (
            events.send([customer_connection], events.WORKER_DISCONNECTED, {"workerId": worker_id}),
            events.send([customer_connection], events.CHAT_ENDED, {
                "message": WORKER_LEFT_MESSAGE,
                "roomId": session.room_id,
            }),
        ) if o]

    async def customer_lost(self, customer_id: str, handle: Optional[str] = None) -> List[Outgoing]:
        presence = self._customers.get(customer_id)
        if presence is None:
            return []
        if handle is not None and self._customers.lookup_transport(customer_id) not in (None, handle):
            logger.debug("Ignoring stale transport %s for customer %s", handle, customer_id)
            return []

        session = self._lifecycle.get(presence.room_id)
        if session is None or not session.is_live():
            self._customers.drop(customer_id)
            return []

        logger.info("Customer %s disconnected from %s", customer_id, session.room_id)
        notice = events.send(
            [self._lifecycle.worker_connection(session)],
            events.CUSTOMER_DISCONNECTED,
            {"customerId": customer_id, "roomId": session.room_id},
        )
        try:
            await self._lifecycle.abandon(session.room_id)
        except InvalidSessionState as e:
            logger.info("Session already closed on customer disconnect: %s", e)
            return []
        self._customers.drop(customer_id)
        return [notice] if notice else []

    async def sweep(self, now: datetime = None) -> List[Outgoing]:
        """Expires idle customers and sessions nobody joined in time.

        A store failure on one item is logged and retried on the next sweep.
        """
        now = now or datetime.now(timezone.utc)
        outgoing: List[Outgoing] = []
        for presence in self._customers.expired(now):
            logger.info("Customer %s expired after inactivity", presence.customer_id)
            try:
                outgoing.extend(await self.customer_lost(presence.customer_id))
            except BrokerError as e:
                logger.error("Could not expire customer %s: %s", presence.customer_id, e)

        for session in self._lifecycle.live_sessions():
            if session.status is SessionStatus.CREATED and now - session.created_at > self._join_timeout:
                logger.info("Session %s was never joined; abandoning", session.room_id)
                try:
                    outgoing.extend(await self._expire_unjoined(session))
                except BrokerError as e:
                    logger.error("Could not abandon unjoined session %s: %s", session.room_id, e)
        return outgoing

    async def _expire_unjoined(self, session: ChatSession) -> List[Outgoing]:
        outgoing = await self.customer_lost(session.customer_id)
        if self._lifecycle.get(session.room_id):
            try:
                await self._lifecycle.abandon(session.room_id)
            except InvalidSessionState as e:
                logger.debug("Session %s closed during sweep: %s", session.room_id, e)
        return outgoing
