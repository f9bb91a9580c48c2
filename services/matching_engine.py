"""
Matching engine: admits a customer by reserving the longest idle worker.

Selection and reservation are fused in ``PresenceRegistry.reserve_longest_idle``
(no suspension point between them). The reservation is then confirmed by
the store's conditional update; a ``ConflictError`` there re-runs
selection once before the customer is offered a callback.
"""
import logging
import random
import string
import time
from typing import Optional

from domain.errors import ConflictError, NoWorkerAvailable, PersistenceError
from domain.presence.customer import CustomerPresence
from domain.session.chat_session import room_id_for
from services.notification import Notifier
from services.presence_registry import PresenceRegistry, CustomerRegistry
from services.session_lifecycle import SessionLifecycle

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2


def new_customer_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"customer_{int(time.time() * 1000)}_{suffix}"


class MatchingEngine:
    def __init__(self,
                 presence: PresenceRegistry,
                 lifecycle: SessionLifecycle,
                 customers: CustomerRegistry,
                 notifier: Optional[Notifier] = None):
        self._presence = presence
        self._lifecycle = lifecycle
        self._customers = customers
        self._notifier = notifier

    async def admit_customer(self, customer_id: str) -> dict:
        """Returns ``{sessionId, workerId, workerName}`` or raises ``NoWorkerAvailable``."""
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return await self._admit_once(customer_id)
            except ConflictError as e:
                logger.warning("Admission conflict for %s (attempt %d): %s", customer_id, attempt, e)
        raise NoWorkerAvailable()

    async def _admit_once(self, customer_id: str) -> dict:
        reserved = self._presence.reserve_longest_idle(lambda worker_id: room_id_for(customer_id, worker_id))
        if reserved is None:
            logger.info("No available worker for %s", customer_id)
            raise NoWorkerAvailable()

        worker_id, room_id = reserved.worker_id, reserved.session_id
        await self._presence.confirm_reservation(worker_id, room_id)

        try:
            session = await self._lifecycle.create(customer_id, worker_id, reserved.worker_name)
        except (PersistenceError, ConflictError):
            logger.exception("Session %s could not be created; releasing worker %s", room_id, worker_id)
            await self._presence.mark_available(worker_id, room_id)
            raise PersistenceError(f"Could not create session {room_id}")

        self._customers.add(CustomerPresence(
            customer_id=customer_id,
            room_id=session.room_id,
            worker_id=worker_id,
            worker_name=reserved.worker_name,
        ))
        logger.info("Customer %s assigned to %s", customer_id, reserved.worker_name)

        if self._notifier:
            self._notifier.notify("new-session", {"roomId": session.room_id, "workerId": worker_id})

        return {
            "sessionId": session.room_id,
            "workerId": worker_id,
            "workerName": reserved.worker_name,
        }
