import logging
from typing import Iterable, Callable, Optional

from domain import events
from domain.callback.callback import CallbackRequest, CallbackStatus
from domain.events import Outgoing
from repositories.callback import CallbackRepository
from services.notification import Notifier
from services.presence_registry import PresenceRegistry

logger = logging.getLogger(__name__)


class CallbackService:
    """Callback requests left by customers when no worker was free."""

    def __init__(self,
                 repository: CallbackRepository,
                 presence: PresenceRegistry,
                 publish: Callable[[Iterable[Outgoing]], None],
                 notifier: Optional[Notifier] = None):
        self._repository = repository
        self._presence = presence
        self._publish = publish
        self._notifier = notifier

    async def create(self, request: CallbackRequest) -> dict:
        _id = await self._repository.save(request.to_dict())
        payload = {
            "id": _id,
            "name": request.name,
            "phone": request.phone,
            "email": request.email,
            "message": request.message,
            "requestedAt": request.requested_at.isoformat(),
            "status": request.status.value,
        }
        logger.info("Callback request %s created", _id)

        # Stored first, then every connected worker hears about it.
        outgoing = events.send(self._presence.connected_handles(), events.NEW_CALLBACK, payload)
        if outgoing:
            self._publish([outgoing])
        if self._notifier:
            self._notifier.notify("new-callback", {"id": _id})
        return payload

    async def list_pending(self, limit: int = 50) -> list:
        return await self._repository.list_by_status(CallbackStatus.PENDING, limit)

    async def update_status(self, _id: str, status: CallbackStatus, notes: Optional[str] = None) -> dict:
        result = await self._repository.update_status(_id, status, notes)
        if not result:
            raise LookupError("Callback not found")
        return result

    async def count_pending(self) -> int:
        return await self._repository.count_by_status(CallbackStatus.PENDING)
