import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import BaseModel

from core.dependencies import get_broker
from domain.errors import NoWorkerAvailable, PersistenceError
from services.broker import SessionBroker
from services.matching_engine import new_customer_id

logger = logging.getLogger(__name__)


class JoinRequest(BaseModel):
    customerId: Optional[str] = None


class CustomerRoutes():
    def __init__(self):
        self.router = APIRouter(prefix="/api/customer", tags=["Customers"])
        self._register_routes()

    def _register_routes(self):
        self.router.add_api_route("/join", self.join, methods=["POST"], status_code=status.HTTP_200_OK)

    async def join(self,
                   payload: JoinRequest = Body(default=None),
                   broker: SessionBroker = Depends(get_broker)) -> dict:
        """Pairs a customer with the longest idle worker, or offers a callback."""
        customer_id = (payload.customerId if payload else None) or new_customer_id()
        try:
            assigned = await broker.matching.admit_customer(customer_id)
        except NoWorkerAvailable as e:
            return {"status": "busy", "customerId": customer_id, "message": e.message}
        except PersistenceError as e:
            logger.error("Admission of %s failed: %s", customer_id, e)
            raise HTTPException(500, "Could not start chat session")

        return {
            "status": "connected",
            "customerId": customer_id,
            "roomId": assigned["sessionId"],
            "workerId": assigned["workerId"],
            "workerName": assigned["workerName"],
        }
