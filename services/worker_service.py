import logging
from datetime import datetime, timezone
from typing import Optional

from domain.errors import AuthError, ConflictError
from domain.workers.worker import Worker
from repositories.worker import WorkerRepository
from services.presence_registry import PresenceRegistry
from utils.security import Security

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = ["worker1", "worker2", "alice", "bob", "sarah"]
DEFAULT_PASSWORD = "password123"


class WorkerService():
    """Worker accounts: the auth collaborator plus admin provisioning."""

    def __init__(self,
                 repository: WorkerRepository,
                 security: Security,
                 presence: Optional[PresenceRegistry] = None) -> None:
        self._repository = repository
        self._security = security
        self._presence = presence

    # ----------------
    # Auth
    # ----------------
    async def authenticate(self, username: str, password: str) -> dict:
        """Returns the worker document or raises ``AuthError``."""
        data = await self._repository.find_by_username(username)
        if not data:
            raise AuthError("Invalid credentials")

        worker = Worker(**data)
        if not worker.password_matches(password):
            raise AuthError("Invalid credentials")

        await self._repository.update(worker._id, {"last_active": datetime.now(timezone.utc)})
        return data

    async def login(self, username: str, password: str) -> dict:
        data = await self.authenticate(username, password)
        token = await self._security.create_token(data)
        logger.info("Worker %s logged in", username)
        return {
            "token": token,
            "worker": {"id": data["_id"], "username": data["username"], "status": data["status"]},
        }

    async def logout(self, worker_id: str) -> None:
        await self._security.revoke(worker_id)

    # ----------------
    # Provisioning
    # ----------------
    async def register(self, username: str, password: str) -> dict:
        if not username or len(username) < 3:
            raise ValueError("Username must be at least 3 characters")
        if not password or len(password) < 6:
            raise ValueError("Password must be at least 6 characters")
        if await self._repository.find_by_username(username):
            raise ConflictError("Username already exists")

        worker = Worker(username=username, password=password)
        worker._id = await self._repository.save(worker.to_dict())
        logger.info("New worker registered: %s (ID: %s)", username, worker._id)
        return worker.public_dict()

    async def delete(self, worker_id: str) -> None:
        data = await self._repository.get_by_id(worker_id)
        if not data:
            raise LookupError("Worker not found")
        if data.get("current_session") or self._is_assigned(worker_id):
            raise ConflictError("Cannot delete worker who is currently in a chat")
        if not await self._repository.delete(worker_id):
            raise ConflictError("Worker was assigned while being deleted")
        await self._security.revoke(worker_id)
        logger.info("Worker deleted: %s (ID: %s)", data["username"], worker_id)

    async def change_password(self, worker_id: str, new_password: str) -> None:
        if not new_password or len(new_password) < 6:
            raise ValueError("Password must be at least 6 characters")
        data = await self._repository.get_by_id(worker_id)
        if not data:
            raise LookupError("Worker not found")
        worker = Worker(**{**data, "password": new_password})
        await self._repository.update(worker_id, {"password": worker.password})
        logger.info("Password updated for worker: %s", data["username"])

    async def list_workers(self) -> list:
        return [Worker(**data).public_dict() for data in await self._repository.list()]

    async def stats(self) -> dict:
        return await self._repository.count_by_status()

    async def seed_defaults(self) -> int:
        """Creates demo workers when the collection is empty."""
        if await self._repository.count() > 0:
            return 0
        for username in DEFAULT_WORKERS:
            await self.register(username, DEFAULT_PASSWORD)
        return len(DEFAULT_WORKERS)

    def _is_assigned(self, worker_id: str) -> bool:
        if self._presence is None:
            return False
        entry = self._presence.get(worker_id)
        return bool(entry and entry.session_id)
