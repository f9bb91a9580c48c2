from repositories._docs import _serialize_doc


class RatingRepository:
    def __init__(self, collection):
        self._collection = collection

    async def save(self, data: dict) -> str:
        result = await self._collection.insert_one(dict(data))
        return str(result.inserted_id)

    async def list_all(self) -> list:
        cursor = self._collection.find({})
        return [_serialize_doc(doc) async for doc in cursor]

    async def recent(self, limit: int = 10) -> list:
        cursor = self._collection.find({}).sort("timestamp", -1).limit(limit)
        return [_serialize_doc(doc) async for doc in cursor]

    async def recent_feedback(self, limit: int = 20) -> list:
        cursor = self._collection.find(
            {"feedback": {"$exists": True, "$ne": "", "$regex": ".+"}}
        ).sort("timestamp", -1).limit(limit)
        return [_serialize_doc(doc) async for doc in cursor]
