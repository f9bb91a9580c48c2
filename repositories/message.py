from typing import Iterable

from pymongo.errors import PyMongoError

from domain.errors import PersistenceError
from domain.message.value_objects import MessageStatus
from repositories._docs import _serialize_doc


class MessageRepository():
    def __init__(self, collection) -> None:
        self._collection = collection

    async def save(self, message: dict) -> None:
        try:
            await self._collection.insert_one(dict(message))
        except PyMongoError as e:
            raise PersistenceError(f"Could not save message {message.get('message_id')}: {e}") from e

    async def advance_status(self,
                             room_id: str,
                             message_id: int,
                             allowed_from: Iterable[MessageStatus],
                             status: MessageStatus) -> bool:
        """Only moves forward: the filter pins the statuses it may leave."""
        try:
            result = await self._collection.update_one(
                {
                    "room_id": room_id,
                    "message_id": message_id,
                    "status": {"$in": [s.value for s in allowed_from]},
                },
                {"$set": {"status": status.value}},
            )
        except PyMongoError as e:
            raise PersistenceError(f"Could not update message {message_id}: {e}") from e
        return result.modified_count > 0

    async def get_history(self, room_id: str, limit: int = 50) -> list:
        cursor = self._collection.find({"room_id": room_id}).sort("timestamp", 1).limit(limit)
        return [_serialize_doc(doc) async for doc in cursor]
