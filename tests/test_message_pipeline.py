import asyncio

import pytest

from domain import events
from domain.errors import InvalidSessionState
from domain.message.types import ContentKind
from domain.session.chat_session import ParticipantRole


async def _send(broker, room, text="hello", role=ParticipantRole.CUSTOMER):
    sender_id = room["customer_id"] if role is ParticipantRole.CUSTOMER else room["worker_id"]
    return await broker.pipeline.submit(room["room_id"], role, sender_id, ContentKind.TEXT, text=text)


class TestSubmit:
    async def test_broadcasts_to_both_parties(self, broker, message_repo, open_room):
        room = await open_room()

        outgoing = await _send(broker, room)

        assert len(outgoing) == 1
        new_message = outgoing[0]
        assert new_message.event == events.NEW_MESSAGE
        assert set(new_message.connections) == {room["customer_handle"], room["worker_handle"]}
        assert new_message.data["message"] == "hello"
        assert new_message.data["status"] == "sent"
        assert new_message.data["sender"] == "customer"
        assert message_repo.docs[0]["message"] == "hello"

    async def test_delivered_follows_new_message(self, broker, publisher, open_room):
        room = await open_room()

        publisher(await _send(broker, room))
        await asyncio.sleep(0.05)

        received = publisher.to(room["worker_handle"])
        assert [e for e, _ in received] == [events.NEW_MESSAGE, events.MESSAGE_STATUS_UPDATE]
        assert received[1][1] == {"messageId": received[0][1]["id"], "status": "delivered"}

    async def test_ids_strictly_increase(self, broker, open_room):
        room = await open_room()

        ids = []
        for i in range(5):
            outgoing = await _send(broker, room, text=f"m{i}")
            ids.append(outgoing[0].data["id"])

        assert ids == sorted(ids)
        assert len(set(ids)) == 5

    async def test_rejected_before_session_is_active(self, broker, message_repo, open_room):
        room = await open_room(join=False)

        with pytest.raises(InvalidSessionState):
            await _send(broker, room)

        assert message_repo.docs == []

    async def test_sender_must_belong_to_room(self, broker, open_room):
        room = await open_room()

        with pytest.raises(ValueError):
            await broker.pipeline.submit(room["room_id"], ParticipantRole.CUSTOMER, "intruder", ContentKind.TEXT, text="hi")

    async def test_empty_text_rejected(self, broker, open_room):
        room = await open_room()

        with pytest.raises(ValueError):
            await _send(broker, room, text="   ")

    async def test_media_needs_url(self, broker, open_room):
        room = await open_room()

        with pytest.raises(ValueError):
            await broker.pipeline.submit(
                room["room_id"], ParticipantRole.WORKER, room["worker_id"], ContentKind.IMAGE, file_data={"name": "a.png"}
            )

    async def test_voice_keeps_duration(self, broker, open_room):
        room = await open_room()

        outgoing = await broker.pipeline.submit(
            room["room_id"], ParticipantRole.CUSTOMER, room["customer_id"], ContentKind.VOICE,
            file_data={"url": "https://cdn/voice/1.webm", "name": "1.webm", "size": 100,
                       "mime": "audio/webm", "duration": 3.5},
        )

        assert outgoing[0].data["messageType"] == "voice"
        assert outgoing[0].data["fileData"]["duration"] == 3.5

    async def test_persistence_failure_only_reaches_sender(self, broker, message_repo, publisher, open_room):
        room = await open_room()
        message_repo.fail_save = True

        outgoing = await _send(broker, room)

        assert len(outgoing) == 1
        assert outgoing[0].event == events.MESSAGE_ERROR
        assert outgoing[0].connections == (events.ORIGIN,)
        await asyncio.sleep(0.05)
        assert publisher.published == []


class TestReadStatus:
    async def test_read_is_idempotent(self, broker, message_repo, open_room):
        room = await open_room()
        message_id = (await _send(broker, room))[0].data["id"]

        first = await broker.pipeline.mark_read(room["room_id"], message_id)
        second = await broker.pipeline.mark_read(room["room_id"], message_id)

        assert first[0].data == {"messageId": message_id, "status": "read"}
        assert second == []
        assert message_repo.docs[0]["status"] == "read"

    async def test_read_before_delivered_never_regresses(self, broker, message_repo, publisher, open_room):
        room = await open_room()
        message_id = (await _send(broker, room))[0].data["id"]

        await broker.pipeline.mark_read(room["room_id"], message_id)
        await asyncio.sleep(0.05)

        assert publisher.events(events.MESSAGE_STATUS_UPDATE) == []
        assert message_repo.docs[0]["status"] == "read"

    async def test_mark_many_read(self, broker, open_room):
        room = await open_room()
        ids = [(await _send(broker, room, text=t))[0].data["id"] for t in ("a", "b")]

        outgoing = await broker.pipeline.mark_many_read(room["room_id"], ids)

        assert [o.data["messageId"] for o in outgoing] == ids

    async def test_closed_room_drops_pending_timers(self, broker, publisher, open_room):
        room = await open_room()
        await _send(broker, room)

        await broker.lifecycle.end(room["room_id"], ParticipantRole.WORKER)
        await asyncio.sleep(0.05)

        assert publisher.events(events.MESSAGE_STATUS_UPDATE) == []
        assert broker.pipeline.history(room["room_id"]) == []
