import logging
from typing import Iterable, Callable, Optional

from domain import events
from domain.events import Outgoing
from domain.rating.rating import ChatRating
from repositories.rating import RatingRepository
from services.notification import Notifier
from services.presence_registry import PresenceRegistry

logger = logging.getLogger(__name__)


class RatingService:
    def __init__(self,
                 repository: RatingRepository,
                 presence: PresenceRegistry,
                 publish: Callable[[Iterable[Outgoing]], None],
                 notifier: Optional[Notifier] = None):
        self._repository = repository
        self._presence = presence
        self._publish = publish
        self._notifier = notifier

    async def rate(self, rating: ChatRating) -> None:
        await self._repository.save(rating.to_dict())
        logger.info("Chat rated: %d/5 stars for worker %s (%s)", rating.rating, rating.worker_name, rating.worker_id)

        outgoing = events.send([self._presence.lookup_transport(rating.worker_id)], events.CHAT_RATED, {
            "rating": rating.rating,
            "feedback": rating.feedback,
            "timestamp": rating.timestamp.isoformat(),
        })
        if outgoing:
            self._publish([outgoing])
        if self._notifier:
            self._notifier.notify("rating-received", {"workerId": rating.worker_id, "rating": rating.rating})

    async def stats(self) -> dict:
        ratings = await self._repository.list_all()
        stats = {
            "totalRatings": len(ratings),
            "averageRating": 0,
            "ratingDistribution": {str(i): 0 for i in range(1, 6)},
            "workerStats": {},
            "recentRatings": [],
        }
        if not ratings:
            return stats

        stats["averageRating"] = round(sum(r["rating"] for r in ratings) / len(ratings), 1)
        for r in ratings:
            stats["ratingDistribution"][str(r["rating"])] += 1
            worker = stats["workerStats"].setdefault(str(r["worker_id"]), {
                "workerName": r.get("worker_name"),
                "ratings": [],
                "totalRatings": 0,
                "averageRating": 0,
            })
            worker["ratings"].append(r["rating"])
            worker["totalRatings"] += 1

        for worker in stats["workerStats"].values():
            worker["averageRating"] = round(sum(worker["ratings"]) / worker["totalRatings"], 1)

        stats["recentRatings"] = await self._repository.recent(10)
        return stats

    async def average(self) -> float:
        ratings = await self._repository.list_all()
        if not ratings:
            return 0
        return round(sum(r["rating"] for r in ratings) / len(ratings), 1)

    async def recent_feedback(self, limit: int = 20) -> list:
        return [{
            "id": r.get("_id"),
            "rating": r["rating"],
            "feedback": r["feedback"],
            "workerName": r.get("worker_name"),
            "timestamp": r["timestamp"],
            "date": r["timestamp"].strftime("%a %b %d %Y"),
        } for r in await self._repository.recent_feedback(limit)]
