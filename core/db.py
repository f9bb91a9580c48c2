import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from core.environment import get_environment

env = get_environment()
logger = logging.getLogger(__name__)


class MongoManager:
    """Owns the single Motor client of the process."""

    def __init__(self, uri: str = None, database_name: str = None):
        self._client: Optional[AsyncIOMotorClient] = None
        self._uri = uri or env.DATABASE_URI
        self._database_name = database_name or env.DATABASE_NAME

    async def connect(self) -> None:
        if self._client:
            return
        # Aware datetimes so stored timestamps compare with in-memory ones
        self._client = AsyncIOMotorClient(self._uri, tz_aware=True)
        logger.info("MongoDB connected (database %s)", self._database_name)

    async def disconnect(self) -> None:
        if self._client:
            self._client.close()
            self._client = None
            logger.info("MongoDB disconnected")

    async def ping(self) -> bool:
        if not self._client:
            return False
        try:
            await self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.error("MongoDB ping failed: %s", e)
            return False

    def get_db(self, db_name: str = None) -> AsyncIOMotorDatabase:
        if not self._client:
            raise RuntimeError("MongoDB client not initialized. Call connect() first.")
        return self._client[db_name or self._database_name]

    def get_collection(self, collection_name: str) -> AsyncIOMotorCollection:
        return self.get_db()[collection_name]


mongo_manager = MongoManager()
