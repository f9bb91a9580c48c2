import asyncio

import pytest

from domain.errors import ConflictError
from domain.workers.worker import WorkerStatus


class TestWorkerPresence:
    async def test_register_makes_offline_worker_available(self, broker, worker_repo, add_worker):
        worker_id = await add_worker("alice")

        entry = await broker.presence.register_worker_connection(worker_id, "alice", "ws-1")

        assert entry.status is WorkerStatus.AVAILABLE
        assert broker.presence.lookup_transport(worker_id) == "ws-1"
        assert worker_repo.docs[worker_id]["status"] == "available"

    async def test_worker_not_reservable_until_store_says_available(self, broker, worker_repo, add_worker):
        worker_id = await add_worker("alice")
        gate = asyncio.Event()
        original = worker_repo.compare_and_set_status

        async def slow_cas(*args, **kwargs):
            await gate.wait()
            return await original(*args, **kwargs)

        worker_repo.compare_and_set_status = slow_cas
        task = asyncio.create_task(broker.presence.register_worker_connection(worker_id, "alice", "ws-1"))
        await asyncio.sleep(0)

        assert broker.presence.reserve_longest_idle(lambda w: f"room_{w}") is None

        gate.set()
        entry = await task
        assert entry.status is WorkerStatus.AVAILABLE
        assert worker_repo.docs[worker_id]["status"] == "available"

    async def test_register_repairs_stale_store_record(self, broker, worker_repo, add_worker, caplog):
        worker_id = await add_worker("alice")
        worker_repo.docs[worker_id]["status"] = "busy"

        with caplog.at_level("WARNING"):
            entry = await broker.presence.register_worker_connection(worker_id, "alice", "ws-1")

        assert "did not hold worker" in caplog.text
        assert entry.status is WorkerStatus.AVAILABLE
        assert worker_repo.docs[worker_id]["status"] == "available"

    async def test_reconnect_keeps_busy_status(self, broker, open_room):
        room = await open_room()

        entry = await broker.presence.register_worker_connection(room["worker_id"], "alice", "ws-new")

        assert entry.status is WorkerStatus.BUSY
        assert entry.session_id == room["room_id"]
        assert broker.presence.lookup_transport(room["worker_id"]) == "ws-new"

    async def test_reserve_picks_longest_idle(self, broker, connect_worker):
        first, _ = await connect_worker("alice")
        await connect_worker("bob")

        reserved = broker.presence.reserve_longest_idle(lambda w: f"room_{w}")

        assert reserved.worker_id == first
        assert broker.presence.get(first).status is WorkerStatus.BUSY
        assert broker.presence.get(first).session_id == f"room_{first}"

    async def test_reserve_returns_none_when_nobody_available(self, broker, connect_worker):
        await connect_worker("alice")
        broker.presence.reserve_longest_idle(lambda w: "room_a")

        assert broker.presence.reserve_longest_idle(lambda w: "room_b") is None

    async def test_store_conflict_reverts_reservation(self, broker, worker_repo, connect_worker):
        worker_id, _ = await connect_worker("alice")
        broker.presence.reserve_longest_idle(lambda w: "room_a")
        worker_repo.conflicts = 1

        with pytest.raises(ConflictError):
            await broker.presence.confirm_reservation(worker_id, "room_a")

        assert broker.presence.get(worker_id).status is WorkerStatus.AVAILABLE
        assert broker.presence.get(worker_id).session_id is None

    async def test_mark_available_rejects_other_session(self, broker, open_room):
        room = await open_room()

        with pytest.raises(ConflictError):
            await broker.presence.mark_available(room["worker_id"], "room_someone_else")

        assert broker.presence.get(room["worker_id"]).status is WorkerStatus.BUSY

    async def test_mark_available_from_available_is_conflict(self, broker, connect_worker):
        worker_id, _ = await connect_worker("alice")

        with pytest.raises(ConflictError):
            await broker.presence.mark_available(worker_id)

    async def test_unregister_returns_held_session(self, broker, worker_repo, open_room):
        room = await open_room()

        held = await broker.presence.unregister(room["worker_id"], room["worker_handle"])

        assert held == room["room_id"]
        assert broker.presence.get(room["worker_id"]).status is WorkerStatus.OFFLINE
        assert broker.presence.lookup_transport(room["worker_id"]) is None
        assert worker_repo.docs[room["worker_id"]]["status"] == "offline"

    async def test_unregister_ignores_stale_handle(self, broker, connect_worker):
        worker_id, _ = await connect_worker("alice")
        await broker.presence.register_worker_connection(worker_id, "alice", "ws-second")

        assert await broker.presence.unregister(worker_id, "ws-alice") is None
        assert broker.presence.get(worker_id).status is WorkerStatus.AVAILABLE
        assert broker.presence.lookup_transport(worker_id) == "ws-second"


class TestCustomerPresence:
    async def test_drop_with_stale_handle_keeps_record(self, broker, open_room):
        room = await open_room()
        broker.customers.bind(room["customer_id"], "ws-reconnected")

        assert broker.customers.drop(room["customer_id"], room["customer_handle"]) is None
        assert broker.customers.get(room["customer_id"]) is not None
