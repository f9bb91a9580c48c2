"""Worker provisioning and system stats. Mutations need the admin key."""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from core.dependencies import (
    get_broker,
    get_callback_service,
    get_rating_service,
    get_worker_service,
    require_admin_key,
)
from domain.errors import ConflictError
from services.broker import SessionBroker
from services.callback_service import CallbackService
from services.rating_service import RatingService
from services.worker_service import WorkerService

logger = logging.getLogger(__name__)


class RegisterWorkerRequest(BaseModel):
    username: str
    password: str


class ChangePasswordRequest(BaseModel):
    newPassword: str


class AdminRoutes():
    def __init__(self):
        self.router = APIRouter(prefix="/api/admin", tags=["Admin"])
        self._register_routes()

    def _register_routes(self):
        self.router.add_api_route("/workers", self.list_workers, methods=["GET"], status_code=status.HTTP_200_OK)
        self.router.add_api_route("/workers", self.register_worker, methods=["POST"],
                                  status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_admin_key)])
        self.router.add_api_route("/workers/{worker_id}", self.delete_worker, methods=["DELETE"],
                                  status_code=status.HTTP_200_OK, dependencies=[Depends(require_admin_key)])
        self.router.add_api_route("/workers/{worker_id}/password", self.change_password, methods=["PUT"],
                                  status_code=status.HTTP_200_OK, dependencies=[Depends(require_admin_key)])
        self.router.add_api_route("/stats", self.stats, methods=["GET"], status_code=status.HTTP_200_OK)

    async def list_workers(self, service: WorkerService = Depends(get_worker_service)) -> dict:
        workers = await service.list_workers()
        return {"workers": workers, "total": len(workers)}

    async def register_worker(self,
                              payload: RegisterWorkerRequest,
                              service: WorkerService = Depends(get_worker_service)) -> dict:
        try:
            worker = await service.register(payload.username.strip(), payload.password)
        except ValueError as e:
            raise HTTPException(400, str(e))
        except ConflictError as e:
            raise HTTPException(409, str(e))
        return {"success": True, "message": "Worker registered successfully", "worker": worker}

    async def delete_worker(self,
                            worker_id: str,
                            service: WorkerService = Depends(get_worker_service)) -> dict:
        try:
            await service.delete(worker_id)
        except LookupError as e:
            raise HTTPException(404, str(e))
        except ConflictError as e:
            raise HTTPException(400, str(e))
        return {"success": True, "message": "Worker deleted successfully"}

    async def change_password(self,
                              worker_id: str,
                              payload: ChangePasswordRequest,
                              service: WorkerService = Depends(get_worker_service)) -> dict:
        try:
            await service.change_password(worker_id, payload.newPassword)
        except ValueError as e:
            raise HTTPException(400, str(e))
        except LookupError as e:
            raise HTTPException(404, str(e))
        return {"success": True, "message": "Password updated successfully"}

    async def stats(self,
                    broker: SessionBroker = Depends(get_broker),
                    workers: WorkerService = Depends(get_worker_service),
                    callbacks: CallbackService = Depends(get_callback_service),
                    ratings: RatingService = Depends(get_rating_service)) -> dict:
        counts = await workers.stats()
        rating_stats = await ratings.stats()
        return {
            "workers": counts,
            "connectedWorkers": len(broker.presence.snapshot()),
            "activeChats": len(broker.lifecycle.live_sessions()),
            "pendingCallbacks": await callbacks.count_pending(),
            "totalRatings": rating_stats["totalRatings"],
            "averageRating": rating_stats["averageRating"],
        }
