from datetime import datetime, timezone
from typing import Optional, Iterable

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from domain.errors import PersistenceError
from domain.session.chat_session import SessionStatus
from repositories._docs import _serialize_doc


class SessionRepository:
    def __init__(self, collection):
        self._collection = collection

    # ------------------------
    # CRUD Operations
    # ------------------------
    async def create_session(self, session: dict) -> dict:
        try:
            await self._collection.insert_one(dict(session))
        except PyMongoError as e:
            raise PersistenceError(f"Could not create session {session.get('room_id')}: {e}") from e
        return session

    async def transition(self,
                         room_id: str,
                         allowed_from: Iterable[SessionStatus],
                         data: dict) -> Optional[dict]:
        """Conditional update guarded by the current status."""
        try:
            result = await self._collection.find_one_and_update(
                {"room_id": room_id, "status": {"$in": [s.value for s in allowed_from]}},
                {"$set": data},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise PersistenceError(f"Could not update session {room_id}: {e}") from e
        return _serialize_doc(result)

    async def increment_message_count(self, room_id: str) -> None:
        try:
            await self._collection.update_one({"room_id": room_id}, {"$inc": {"message_count": 1}})
        except PyMongoError as e:
            raise PersistenceError(f"Could not update session {room_id}: {e}") from e

    async def abandon_live_sessions(self) -> int:
        """Sessions left open by a previous process can never be resumed."""
        response = await self._collection.update_many(
            {"status": {"$in": [SessionStatus.CREATED.value, SessionStatus.ACTIVE.value]}},
            {"$set": {"status": SessionStatus.ABANDONED.value, "ended_at": datetime.now(timezone.utc)}},
        )
        return response.modified_count
