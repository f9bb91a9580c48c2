from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, ValidationError

from core.dependencies import get_callback_service, get_current_worker
from domain.callback.callback import CallbackRequest, CallbackStatus
from services.callback_service import CallbackService


class CallbackCreate(BaseModel):
    name: str
    phone: str
    email: Optional[str] = None
    message: Optional[str] = None


class CallbackUpdate(BaseModel):
    status: CallbackStatus
    notes: Optional[str] = Field(default=None, max_length=500)


class CallbackRoutes():
    def __init__(self):
        self.router = APIRouter(prefix="/api", tags=["Callbacks"])
        self._register_routes()

    def _register_routes(self):
        self.router.add_api_route("/callback", self.create, methods=["POST"], status_code=status.HTTP_201_CREATED)
        self.router.add_api_route("/worker/callbacks", self.list_pending, methods=["GET"],
                                  status_code=status.HTTP_200_OK, dependencies=[Depends(get_current_worker)])
        self.router.add_api_route("/worker/callbacks/{callback_id}", self.update_status, methods=["PUT"],
                                  status_code=status.HTTP_200_OK, dependencies=[Depends(get_current_worker)])

    async def create(self,
                     payload: CallbackCreate,
                     service: CallbackService = Depends(get_callback_service)) -> dict:
        """Customer leaves contact details when every worker is busy."""
        if not payload.name.strip() or not payload.phone.strip():
            raise HTTPException(400, "Name and phone are required")
        try:
            request = CallbackRequest(
                name=payload.name.strip(),
                phone=payload.phone.strip(),
                email=(payload.email or "").strip() or None,
                message=(payload.message or "").strip() or None,
            )
        except ValidationError as e:
            raise HTTPException(400, e.errors()[0]["msg"])
        callback = await service.create(request)
        return {
            "success": True,
            "message": "Callback request submitted successfully. We'll contact you soon!",
            "callbackId": callback["id"],
        }

    async def list_pending(self, service: CallbackService = Depends(get_callback_service)) -> dict:
        return {"callbacks": await service.list_pending()}

    async def update_status(self,
                            callback_id: str,
                            payload: CallbackUpdate,
                            service: CallbackService = Depends(get_callback_service)) -> dict:
        try:
            callback = await service.update_status(callback_id, payload.status, payload.notes)
        except LookupError as e:
            raise HTTPException(404, str(e))
        return {"success": True, "callback": callback}
