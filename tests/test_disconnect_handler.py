from datetime import datetime, timedelta, timezone

from domain import events
from domain.events import ConnectionContext
from domain.workers.worker import WorkerStatus
from services.disconnect_handler import WORKER_LEFT_MESSAGE


def _customer_ctx(room):
    return ConnectionContext(room["customer_handle"], customer_id=room["customer_id"], room_id=room["room_id"])


def _worker_ctx(room):
    return ConnectionContext(room["worker_handle"], authenticated_worker_id=room["worker_id"], worker_id=room["worker_id"])


class TestCustomerLost:
    async def test_worker_notified_and_released(self, broker, session_repo, open_room):
        room = await open_room()

        outgoing = await broker.disconnects.on_transport_lost(_customer_ctx(room))

        assert len(outgoing) == 1
        assert outgoing[0].event == events.CUSTOMER_DISCONNECTED
        assert outgoing[0].connections == (room["worker_handle"],)
        assert outgoing[0].data == {"customerId": room["customer_id"], "roomId": room["room_id"]}
        assert session_repo.docs[room["room_id"]]["status"] == "abandoned"
        assert broker.presence.get(room["worker_id"]).status is WorkerStatus.AVAILABLE
        assert broker.customers.get(room["customer_id"]) is None

    async def test_stale_transport_is_ignored(self, broker, open_room):
        room = await open_room()
        broker.customers.bind(room["customer_id"], "ws-customer-again")

        assert await broker.disconnects.on_transport_lost(_customer_ctx(room)) == []
        assert broker.lifecycle.get(room["room_id"]) is not None

    async def test_released_worker_can_be_matched_again(self, broker, open_room):
        room = await open_room()
        await broker.disconnects.on_transport_lost(_customer_ctx(room))

        result = await broker.matching.admit_customer("customer-2")

        assert result["workerId"] == room["worker_id"]


class TestWorkerLost:
    async def test_customer_told_chat_is_over(self, broker, worker_repo, session_repo, open_room):
        room = await open_room()

        outgoing = await broker.disconnects.on_transport_lost(_worker_ctx(room))

        assert [o.event for o in outgoing] == [events.WORKER_DISCONNECTED, events.CHAT_ENDED]
        assert all(o.connections == (room["customer_handle"],) for o in outgoing)
        assert outgoing[1].data == {"message": WORKER_LEFT_MESSAGE, "roomId": room["room_id"]}
        assert session_repo.docs[room["room_id"]]["status"] == "abandoned"
        assert broker.presence.get(room["worker_id"]).status is WorkerStatus.OFFLINE
        assert worker_repo.docs[room["worker_id"]]["status"] == "offline"

    async def test_idle_worker_goes_offline_quietly(self, broker, connect_worker):
        worker_id, handle = await connect_worker("alice")

        outgoing = await broker.disconnects.on_transport_lost(
            ConnectionContext(handle, authenticated_worker_id=worker_id, worker_id=worker_id)
        )

        assert outgoing == []
        assert broker.presence.get(worker_id).status is WorkerStatus.OFFLINE

    async def test_reconnected_worker_keeps_session(self, broker, open_room):
        room = await open_room()
        await broker.presence.register_worker_connection(room["worker_id"], "alice", "ws-alice-2")

        outgoing = await broker.disconnects.on_transport_lost(_worker_ctx(room))

        assert outgoing == []
        assert broker.presence.get(room["worker_id"]).status is WorkerStatus.BUSY
        assert broker.lifecycle.get(room["room_id"]) is not None


class TestSweep:
    async def test_expires_inactive_customers(self, broker, open_room):
        room = await open_room()
        later = datetime.now(timezone.utc) + timedelta(days=2)

        outgoing = await broker.disconnects.sweep(later)

        assert [o.event for o in outgoing] == [events.CUSTOMER_DISCONNECTED]
        assert broker.lifecycle.get(room["room_id"]) is None

    async def test_abandons_sessions_nobody_joined(self, broker, open_room):
        room = await open_room(join=False)
        later = datetime.now(timezone.utc) + timedelta(minutes=5)

        await broker.disconnects.sweep(later)

        assert broker.lifecycle.get(room["room_id"]) is None
        assert broker.presence.get(room["worker_id"]).status is WorkerStatus.AVAILABLE

    async def test_recent_sessions_survive(self, broker, open_room):
        room = await open_room(join=False)

        assert await broker.disconnects.sweep() == []
        assert broker.lifecycle.get(room["room_id"]) is not None

    async def test_store_failure_does_not_stop_sweep(self, broker, session_repo, open_room):
        expired = await open_room("alice", "customer-1")
        unjoined = await open_room("bob", "customer-2", join=False)
        session_repo.fail_transition = True
        later = datetime.now(timezone.utc) + timedelta(days=2)

        assert await broker.disconnects.sweep(later) == []
        assert broker.lifecycle.get(expired["room_id"]).status.value == "active"
        assert broker.lifecycle.get(unjoined["room_id"]).status.value == "created"

        session_repo.fail_transition = False
        await broker.disconnects.sweep(later)

        assert broker.lifecycle.get(expired["room_id"]) is None
        assert broker.lifecycle.get(unjoined["room_id"]) is None
        assert broker.presence.get(expired["worker_id"]).status is WorkerStatus.AVAILABLE
        assert broker.presence.get(unjoined["worker_id"]).status is WorkerStatus.AVAILABLE
