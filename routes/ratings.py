from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from core.dependencies import get_rating_service
from domain.rating.rating import ChatRating
from services.rating_service import RatingService


class RatingCreate(BaseModel):
    roomId: str
    customerId: str
    workerId: str
    workerName: str
    rating: int
    feedback: str = ""


class RatingRoutes():
    def __init__(self):
        self.router = APIRouter(prefix="/api", tags=["Ratings"])
        self._register_routes()

    def _register_routes(self):
        self.router.add_api_route("/chat/rate", self.rate, methods=["POST"], status_code=status.HTTP_201_CREATED)
        self.router.add_api_route("/ratings/stats", self.stats, methods=["GET"], status_code=status.HTTP_200_OK)
        self.router.add_api_route("/ratings/feedback", self.feedback, methods=["GET"], status_code=status.HTTP_200_OK)

    async def rate(self,
                   payload: RatingCreate,
                   service: RatingService = Depends(get_rating_service)) -> dict:
        if not 1 <= payload.rating <= 5:
            raise HTTPException(400, "Rating must be between 1 and 5")
        feedback = payload.feedback.strip()
        if len(feedback) > 500:
            raise HTTPException(400, "Feedback must be at most 500 characters")

        await service.rate(ChatRating(
            room_id=payload.roomId,
            customer_id=payload.customerId,
            worker_id=payload.workerId,
            worker_name=payload.workerName,
            rating=payload.rating,
            feedback=feedback,
        ))
        return {"success": True, "message": "Thank you for your feedback!"}

    async def stats(self, service: RatingService = Depends(get_rating_service)) -> dict:
        return await service.stats()

    async def feedback(self,
                       limit: int = Query(20, ge=1, le=100),
                       service: RatingService = Depends(get_rating_service)) -> dict:
        return {"feedback": await service.recent_feedback(limit)}
