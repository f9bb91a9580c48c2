"""
Fire-and-forget notification collaborator.

Events are POSTed to an optional webhook (desktop/push notification
service). Callers never await delivery; failures are only logged.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class Notifier:
    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 5):
        self._webhook_url = webhook_url
        self._timeout = timeout
        self._tasks: set = set()

    def notify(self, event: str, payload: Dict[str, Any]) -> None:
        if not self._webhook_url:
            return
        try:
            task = asyncio.get_running_loop().create_task(self._post(event, payload))
        except RuntimeError:
            logger.debug("No running loop; notification %s dropped", event)
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _post(self, event: str, payload: Dict[str, Any]) -> None:
        body = {
            "event": event,
            "payload": payload,
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(self._webhook_url, json=body, timeout=self._timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Notification %s failed: %s", event, e)
