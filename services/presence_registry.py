"""
In-memory presence for workers and customers.

The registry is the single source of truth for who can receive work right
now. Every availability change is a compare-and-set against the expected
prior state, done without suspending, then mirrored to the worker store
with the store's own conditional update.
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone, timedelta
from typing import Callable, Dict, List, Optional

from domain.errors import ConflictError
from domain.presence.customer import CustomerPresence
from domain.workers.worker import WorkerStatus
from repositories.worker import WorkerRepository

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WorkerPresence:
    worker_id: str
    worker_name: str
    handle: Optional[str] = None
    status: WorkerStatus = WorkerStatus.OFFLINE
    session_id: Optional[str] = None
    last_active: datetime = None

    def public_dict(self) -> dict:
        return {
            "workerId": self.worker_id,
            "workerName": self.worker_name,
            "status": self.status.value,
            "currentSession": self.session_id,
            "lastActive": self.last_active.isoformat() if self.last_active else None,
        }


class PresenceRegistry:
    def __init__(self, repository: WorkerRepository):
        self._repository = repository
        self._workers: Dict[str, WorkerPresence] = {}

    # ----------------
    # Reads
    # ----------------
    def get(self, worker_id: str) -> Optional[WorkerPresence]:
        entry = self._workers.get(worker_id)
        return replace(entry) if entry else None

    def lookup_transport(self, worker_id: str) -> Optional[str]:
        entry = self._workers.get(worker_id)
        return entry.handle if entry else None

    def connected_handles(self) -> List[str]:
        return [w.handle for w in self._workers.values() if w.handle]

    def count(self, status: WorkerStatus) -> int:
        return sum(1 for w in self._workers.values() if w.status is status)

    def snapshot(self) -> List[dict]:
        return [w.public_dict() for w in self._workers.values()]

    # ----------------
    # Transitions
    # ----------------
    async def register_worker_connection(self, worker_id: str, worker_name: str, handle: str) -> WorkerPresence:
        """Binds a transport; an offline worker becomes available.

        The store is moved offline -> available first. The worker stays
        offline in memory until then, so no reservation can reach the store
        ahead of that write.
        """
        entry = self._workers.get(worker_id)
        if entry is None:
            entry = WorkerPresence(worker_id=worker_id, worker_name=worker_name, last_active=_now())
            self._workers[worker_id] = entry

        entry.handle = handle
        entry.worker_name = worker_name or entry.worker_name
        if entry.status is not WorkerStatus.OFFLINE:
            logger.info("Worker %s rebound to a new transport (%s)", worker_id, entry.status.value)
            return replace(entry)

        stored = await self._repository.compare_and_set_status(worker_id, WorkerStatus.OFFLINE, WorkerStatus.AVAILABLE)
        if stored is None:
            logger.warning("Store did not hold worker %s as offline; overwriting", worker_id)
            await self._repository.set_status(worker_id, WorkerStatus.AVAILABLE, None)

        # Superseded or dropped while the store write was in flight.
        if entry.handle != handle or entry.status is not WorkerStatus.OFFLINE:
            return replace(entry)

        entry.status = WorkerStatus.AVAILABLE
        entry.session_id = None
        entry.last_active = _now()
        logger.info("Worker %s is now AVAILABLE", worker_id)
        return replace(entry)

    def reserve_longest_idle(self, session_id_for: Callable[[str], str]) -> Optional[WorkerPresence]:
        """Selects the longest idle available worker and marks it busy.

        Selection and reservation happen in one synchronous block; nothing
        else can observe the worker as available in between.
        """
        candidates = [w for w in self._workers.values() if w.status is WorkerStatus.AVAILABLE and w.handle]
        if not candidates:
            return None
        chosen = min(candidates, key=lambda w: (w.last_active, w.worker_id))
        self._cas(chosen.worker_id, WorkerStatus.AVAILABLE, WorkerStatus.BUSY, session_id_for(chosen.worker_id))
        return replace(chosen)

    async def confirm_reservation(self, worker_id: str, session_id: str) -> None:
        """Mirrors a reservation to the store; reverts it when the store disagrees."""
        stored = await self._repository.compare_and_set_status(
            worker_id, WorkerStatus.AVAILABLE, WorkerStatus.BUSY, current_session=session_id
        )
        if stored is None:
            self._revert_reservation(worker_id, session_id)
            raise ConflictError(f"Worker {worker_id} is not available in the store",
                                expected=WorkerStatus.AVAILABLE)

    async def mark_busy(self, worker_id: str, session_id: str) -> None:
        self._cas(worker_id, WorkerStatus.AVAILABLE, WorkerStatus.BUSY, session_id)
        await self.confirm_reservation(worker_id, session_id)

    async def mark_available(self, worker_id: str, session_id: Optional[str] = None) -> None:
        """Releases a busy worker, optionally only if it still holds ``session_id``."""
        entry = self._workers.get(worker_id)
        if entry is not None and session_id is not None and entry.session_id != session_id:
            raise ConflictError(f"Worker {worker_id} does not hold session {session_id}",
                                expected=session_id, actual=entry.session_id)
        held = entry.session_id if entry else None
        self._cas(worker_id, WorkerStatus.BUSY, WorkerStatus.AVAILABLE, None)

        stored = await self._repository.compare_and_set_status(
            worker_id, WorkerStatus.BUSY, WorkerStatus.AVAILABLE,
            current_session=None, expected_session=held,
        )
        if stored is None:
            logger.warning("Store did not hold worker %s as busy with %s", worker_id, held)
        logger.info("Worker %s released and AVAILABLE", worker_id)

    async def unregister(self, worker_id: str, handle: Optional[str] = None) -> Optional[str]:
        """Drops the transport and sets the worker offline.

        Returns the session the worker held, if any. A ``handle`` that is no
        longer the worker's current transport is ignored.
        """
        entry = self._workers.get(worker_id)
        if entry is None:
            return None
        if handle is not None and entry.handle != handle:
            logger.debug("Ignoring stale transport %s for worker %s", handle, worker_id)
            return None

        held = entry.session_id
        entry.handle = None
        entry.status = WorkerStatus.OFFLINE
        entry.session_id = None
        entry.last_active = _now()

        await self._repository.set_status(worker_id, WorkerStatus.OFFLINE, None)
        logger.info("Worker %s went offline", worker_id)
        return held

    # ----------------
    # Helpers
    # ----------------
    def _cas(self, worker_id: str, expected: WorkerStatus, new: WorkerStatus, session_id: Optional[str]) -> None:
        entry = self._workers.get(worker_id)
        actual = entry.status if entry else WorkerStatus.OFFLINE
        if actual is not expected:
            raise ConflictError(f"Worker {worker_id} is {actual.value}, expected {expected.value}",
                                expected=expected, actual=actual)
        entry.status = new
        entry.session_id = session_id
        entry.last_active = _now()

    def _revert_reservation(self, worker_id: str, session_id: str) -> None:
        entry = self._workers.get(worker_id)
        if entry and entry.status is WorkerStatus.BUSY and entry.session_id == session_id:
            entry.status = WorkerStatus.AVAILABLE
            entry.session_id = None


class CustomerRegistry:
    """Ephemeral customer presence, keyed by customer id."""

    def __init__(self, inactivity_window: timedelta):
        self._window = inactivity_window
        self._customers: Dict[str, CustomerPresence] = {}
        self._handles: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._customers)

    def add(self, presence: CustomerPresence) -> None:
        self._customers[presence.customer_id] = presence

    def get(self, customer_id: str) -> Optional[CustomerPresence]:
        return self._customers.get(customer_id)

    def bind(self, customer_id: str, handle: str) -> None:
        self._handles[customer_id] = handle
        presence = self._customers.get(customer_id)
        if presence:
            presence.touch()

    def lookup_transport(self, customer_id: str) -> Optional[str]:
        return self._handles.get(customer_id)

    def touch(self, customer_id: str) -> None:
        presence = self._customers.get(customer_id)
        if presence:
            presence.touch()

    def drop(self, customer_id: str, handle: Optional[str] = None) -> Optional[CustomerPresence]:
        """Removes the record; a stale ``handle`` leaves it in place."""
        if handle is not None and self._handles.get(customer_id) not in (None, handle):
            return None
        self._handles.pop(customer_id, None)
        return self._customers.pop(customer_id, None)

    def expired(self, now: datetime = None) -> List[CustomerPresence]:
        return [p for p in self._customers.values() if p.is_expired(self._window, now)]
