import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from core.dependencies import get_broker, get_current_worker, get_worker_service
from domain.errors import AuthError
from domain.workers.worker import WorkerStatus
from services.broker import SessionBroker
from services.worker_service import WorkerService

logger = logging.getLogger(__name__)


class LoginRequest(BaseModel):
    username: str
    password: str


class WorkerRoutes():
    def __init__(self):
        self.router = APIRouter(prefix="/api", tags=["Workers"])
        self._register_routes()

    def _register_routes(self):
        self.router.add_api_route("/worker/login", self.login, methods=["POST"], status_code=status.HTTP_200_OK)
        self.router.add_api_route("/worker/logout", self.logout, methods=["POST"], status_code=status.HTTP_200_OK)
        self.router.add_api_route("/workers/status", self.workers_status, methods=["GET"], status_code=status.HTTP_200_OK)

    async def login(self,
                    payload: LoginRequest,
                    service: WorkerService = Depends(get_worker_service)) -> dict:
        try:
            result = await service.login(payload.username, payload.password)
        except AuthError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=str(e),
                headers={"WWW-Authenticate": "Bearer"},
            )
        return {"success": True, **result}

    async def logout(self,
                     worker: dict = Depends(get_current_worker),
                     service: WorkerService = Depends(get_worker_service)) -> dict:
        await service.logout(worker["_id"])
        return {"success": True}

    async def workers_status(self, broker: SessionBroker = Depends(get_broker)) -> dict:
        """Snapshot of connected workers as the presence registry sees them."""
        return {
            "available": broker.presence.count(WorkerStatus.AVAILABLE),
            "busy": broker.presence.count(WorkerStatus.BUSY),
            "activeChats": len(broker.lifecycle.live_sessions()),
            "waitingCustomers": len(broker.customers),
            "workers": broker.presence.snapshot(),
        }
