from datetime import datetime, timezone
from typing import Optional

from pymongo import ReturnDocument

from domain.callback.callback import CallbackStatus
from repositories._docs import _serialize_doc, _object_id


class CallbackRepository:
    def __init__(self, collection):
        self._collection = collection

    async def save(self, data: dict) -> str:
        result = await self._collection.insert_one(dict(data))
        return str(result.inserted_id)

    async def list_by_status(self, status: CallbackStatus = CallbackStatus.PENDING, limit: int = 50) -> list:
        cursor = self._collection.find({"status": status.value}).sort("requested_at", -1).limit(limit)
        return [_serialize_doc(doc) async for doc in cursor]

    async def update_status(self, _id: str, status: CallbackStatus, notes: Optional[str] = None) -> Optional[dict]:
        oid = _object_id(_id)
        if oid is None:
            return None
        data = {"status": status.value}
        if status is CallbackStatus.CONTACTED:
            data["contacted_at"] = datetime.now(timezone.utc)
        if notes is not None:
            data["notes"] = notes
        result = await self._collection.find_one_and_update(
            {"_id": oid}, {"$set": data}, return_document=ReturnDocument.AFTER
        )
        return _serialize_doc(result)

    async def count_by_status(self, status: CallbackStatus) -> int:
        return await self._collection.count_documents({"status": status.value})
