import itertools
from datetime import datetime, timezone

import pytest

from core.environment import EnvironmentSettings
from domain.errors import ConflictError, PersistenceError
from domain.session.chat_session import ParticipantRole
from domain.workers.worker import Worker, WorkerStatus
from services.broker import SessionBroker
from utils.security import Security

_ids = itertools.count(1)


def _new_id() -> str:
    return f"{next(_ids):024x}"


class FakeWorkerRepository:
    def __init__(self):
        self.docs: dict[str, dict] = {}
        self.conflicts = 0  # next N compare-and-sets fail as if another process won

    async def save(self, data: dict) -> str:
        if any(d["username"] == data["username"] for d in self.docs.values()):
            raise ConflictError("Username already exists")
        _id = _new_id()
        self.docs[_id] = {**data, "_id": _id}
        return _id

    async def get_by_id(self, _id: str):
        doc = self.docs.get(_id)
        return dict(doc) if doc else None

    async def find_by_username(self, username: str):
        return next((dict(d) for d in self.docs.values() if d["username"] == username), None)

    async def update(self, _id: str, data: dict) -> int:
        if _id not in self.docs:
            return 0
        self.docs[_id].update(data)
        return 1

    async def list(self, filter: dict = None) -> list:
        return [dict(d) for d in self.docs.values()]

    async def delete(self, _id: str) -> int:
        doc = self.docs.get(_id)
        if not doc or doc.get("current_session"):
            return 0
        del self.docs[_id]
        return 1

    async def count(self) -> int:
        return len(self.docs)

    async def count_by_status(self) -> dict:
        counts = {s.value: 0 for s in WorkerStatus}
        for doc in self.docs.values():
            counts[doc["status"]] += 1
        counts["total"] = sum(counts.values())
        return counts

    async def compare_and_set_status(self, _id, expected, new, current_session=None, expected_session=None):
        doc = self.docs.get(_id)
        if self.conflicts:
            self.conflicts -= 1
            return None
        if not doc or doc["status"] != expected.value:
            return None
        if expected_session is not None and doc.get("current_session") != expected_session:
            return None
        doc.update(status=new.value, current_session=current_session)
        return dict(doc)

    async def set_status(self, _id, status, current_session=None) -> int:
        if _id not in self.docs:
            return 0
        self.docs[_id].update(status=status.value, current_session=current_session)
        return 1

    async def reset_all_offline(self) -> int:
        for doc in self.docs.values():
            doc.update(status=WorkerStatus.OFFLINE.value, current_session=None)
        return len(self.docs)


class FakeSessionRepository:
    def __init__(self):
        self.docs: dict[str, dict] = {}
        self.fail_create = False
        self.fail_transition = False

    async def create_session(self, session: dict) -> dict:
        if self.fail_create:
            raise PersistenceError(f"Could not create session {session['room_id']}")
        self.docs[session["room_id"]] = dict(session)
        return session

    async def transition(self, room_id, allowed_from, data):
        if self.fail_transition:
            raise PersistenceError(f"Could not update session {room_id}")
        doc = self.docs.get(room_id)
        if not doc or doc["status"] not in [s.value for s in allowed_from]:
            return None
        doc.update(data)
        return dict(doc)

    async def increment_message_count(self, room_id) -> None:
        if room_id in self.docs:
            self.docs[room_id]["message_count"] = self.docs[room_id].get("message_count", 0) + 1

    async def abandon_live_sessions(self) -> int:
        live = [d for d in self.docs.values() if d["status"] in ("created", "active")]
        for doc in live:
            doc["status"] = "abandoned"
        return len(live)


class FakeMessageRepository:
    def __init__(self):
        self.docs: list[dict] = []
        self.fail_save = False

    async def save(self, message: dict) -> None:
        if self.fail_save:
            raise PersistenceError("Could not save message")
        self.docs.append(dict(message))

    def _find(self, room_id, message_id):
        return next((d for d in self.docs if d["room_id"] == room_id and d["message_id"] == message_id), None)

    async def advance_status(self, room_id, message_id, allowed_from, status) -> bool:
        doc = self._find(room_id, message_id)
        if not doc or doc["status"] not in [s.value for s in allowed_from]:
            return False
        doc["status"] = status.value
        return True

    async def get_history(self, room_id, limit=50) -> list:
        docs = sorted((d for d in self.docs if d["room_id"] == room_id), key=lambda d: d["timestamp"])
        return docs[:limit]


class FakeCallbackRepository:
    def __init__(self):
        self.docs: dict[str, dict] = {}

    async def save(self, data: dict) -> str:
        _id = _new_id()
        self.docs[_id] = {**data, "_id": _id}
        return _id

    async def list_by_status(self, status, limit=50) -> list:
        return [d for d in self.docs.values() if d["status"] == status.value][:limit]

    async def update_status(self, _id, status, notes=None):
        doc = self.docs.get(_id)
        if not doc:
            return None
        doc["status"] = status.value
        if notes is not None:
            doc["notes"] = notes
        return dict(doc)

    async def count_by_status(self, status) -> int:
        return sum(1 for d in self.docs.values() if d["status"] == status.value)


class FakeRatingRepository:
    def __init__(self):
        self.docs: list[dict] = []

    async def save(self, data: dict) -> str:
        _id = _new_id()
        self.docs.append({**data, "_id": _id})
        return _id

    async def list_all(self) -> list:
        return list(self.docs)

    async def recent(self, limit=10) -> list:
        return sorted(self.docs, key=lambda d: d["timestamp"], reverse=True)[:limit]

    async def recent_feedback(self, limit=20) -> list:
        return [d for d in await self.recent(len(self.docs)) if d.get("feedback")][:limit]


class FakeCache:
    def __init__(self):
        self.store: dict[str, str] = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ttl_s=None):
        self.store[key] = value

    async def delete(self, key):
        self.store.pop(key, None)


class RecordingPublisher:
    """Stands in for the connection manager; keeps frames per connection."""

    def __init__(self):
        self.published = []

    def __call__(self, outgoing, origin=None):
        for event in outgoing:
            for connection_id in event.resolve(origin):
                self.published.append((connection_id, event.event, event.data))

    def to(self, connection_id, event=None):
        return [(e, d) for c, e, d in self.published if c == connection_id and (event is None or e == event)]

    def events(self, event):
        return [(c, d) for c, e, d in self.published if e == event]


@pytest.fixture
def env():
    return EnvironmentSettings(DELIVERED_DELAY_MS=10, TYPING_EXPIRY_SECONDS=0.05)


@pytest.fixture
def worker_repo():
    return FakeWorkerRepository()


@pytest.fixture
def session_repo():
    return FakeSessionRepository()


@pytest.fixture
def message_repo():
    return FakeMessageRepository()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def broker(worker_repo, session_repo, message_repo, publisher, env):
    return SessionBroker(worker_repo, session_repo, message_repo, publish=publisher, env=env)


@pytest.fixture
def security():
    return Security(FakeCache())


@pytest.fixture
def add_worker(worker_repo):
    async def _add(username: str) -> str:
        worker = Worker(username=username, password="password123", created_at=datetime.now(timezone.utc))
        return await worker_repo.save(worker.to_dict())

    return _add


@pytest.fixture
def connect_worker(broker, add_worker):
    """Registers a worker with its own transport handle; returns (worker_id, handle)."""
    async def _connect(username: str):
        worker_id = await add_worker(username)
        handle = f"ws-{username}"
        await broker.presence.register_worker_connection(worker_id, username, handle)
        return worker_id, handle

    return _connect


@pytest.fixture
def open_room(broker, connect_worker):
    """Admits a customer to a fresh worker and joins both parties; returns the ids and handles."""
    async def _open(username: str = "alice", customer_id: str = "customer-1", join: bool = True):
        worker_id, worker_handle = await connect_worker(username)
        assigned = await broker.matching.admit_customer(customer_id)
        room_id = assigned["sessionId"]
        customer_handle = f"ws-{customer_id}"
        broker.customers.bind(customer_id, customer_handle)
        if join:
            await broker.lifecycle.join(room_id, ParticipantRole.CUSTOMER)
            await broker.lifecycle.join(room_id, ParticipantRole.WORKER)
        return {
            "room_id": room_id,
            "worker_id": worker_id,
            "worker_handle": worker_handle,
            "customer_id": customer_id,
            "customer_handle": customer_handle,
        }

    return _open


@pytest.fixture
def callback_repo():
    return FakeCallbackRepository()


@pytest.fixture
def rating_repo():
    return FakeRatingRepository()
