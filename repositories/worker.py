from datetime import datetime, timezone
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError, DuplicateKeyError

from domain.errors import PersistenceError, ConflictError
from domain.workers.worker import WorkerStatus
from repositories._docs import _serialize_doc, _object_id


class WorkerRepository():
    def __init__(self, collection) -> None:
        self._collection = collection

    async def save(self, data: dict) -> str:
        try:
            result = await self._collection.insert_one(data)
        except DuplicateKeyError as e:
            raise ConflictError(f"Worker {data.get('username')} already exists") from e
        except PyMongoError as e:
            raise PersistenceError(f"Could not save worker: {e}") from e
        return str(result.inserted_id)

    async def get_by_id(self, _id: str) -> Optional[dict]:
        oid = _object_id(_id)
        if oid is None:
            return None
        result = await self._collection.find_one({"_id": oid})
        return _serialize_doc(result)

    async def find_by_username(self, username: str) -> Optional[dict]:
        result = await self._collection.find_one({"username": username})
        return _serialize_doc(result)

    async def update(self, _id: str, data: dict) -> int:
        oid = _object_id(_id)
        if oid is None:
            return 0
        result = await self._collection.update_one({"_id": oid}, {"$set": data})
        return result.modified_count

    async def list(self, filter: dict = None) -> list:
        cursor = self._collection.find(filter or {}).sort("created_at", 1)
        results = await cursor.to_list(length=None)
        return [_serialize_doc(doc) for doc in results]

    async def delete(self, _id: str) -> int:
        oid = _object_id(_id)
        if oid is None:
            return 0
        result = await self._collection.delete_one({"_id": oid, "current_session": None})
        return result.deleted_count

    async def count(self) -> int:
        return await self._collection.count_documents({})

    async def count_by_status(self) -> dict:
        counts = {status.value: 0 for status in WorkerStatus}
        pipeline = [{"$group": {"_id": "$status", "count": {"$sum": 1}}}]
        async for row in self._collection.aggregate(pipeline):
            if row["_id"] in counts:
                counts[row["_id"]] = row["count"]
        counts["total"] = sum(counts.values())
        return counts

    async def compare_and_set_status(self,
                                     _id: str,
                                     expected: WorkerStatus,
                                     new: WorkerStatus,
                                     current_session: Optional[str] = None,
                                     expected_session: Optional[str] = None) -> Optional[dict]:
        """Atomically moves a worker from ``expected`` to ``new``.

        Returns the updated document, or None when the stored state did not
        match the expectation.
        """
        oid = _object_id(_id)
        if oid is None:
            return None
        query = {"_id": oid, "status": expected.value}
        if expected_session is not None:
            query["current_session"] = expected_session
        try:
            result = await self._collection.find_one_and_update(
                query,
                {"$set": {
                    "status": new.value,
                    "current_session": current_session,
                    "last_active": datetime.now(timezone.utc),
                }},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise PersistenceError(f"Could not update worker {_id}: {e}") from e
        return _serialize_doc(result)

    async def set_status(self, _id: str, status: WorkerStatus, current_session: Optional[str] = None) -> int:
        """Unconditional write, used when a transport goes away."""
        oid = _object_id(_id)
        if oid is None:
            return 0
        try:
            result = await self._collection.update_one(
                {"_id": oid},
                {"$set": {
                    "status": status.value,
                    "current_session": current_session,
                    "last_active": datetime.now(timezone.utc),
                }},
            )
        except PyMongoError as e:
            raise PersistenceError(f"Could not update worker {_id}: {e}") from e
        return result.modified_count

    async def reset_all_offline(self) -> int:
        """Presence lives in memory, so every worker is offline after a restart."""
        result = await self._collection.update_many(
            {"status": {"$ne": WorkerStatus.OFFLINE.value}},
            {"$set": {"status": WorkerStatus.OFFLINE.value, "current_session": None}},
        )
        return result.modified_count
