import asyncio
import logging
import uuid
from typing import Dict, Iterable, Optional, Tuple

from fastapi import WebSocket

from domain.events import Outgoing

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Holds open sockets and delivers outgoing events in publish order.

    ``publish`` never suspends: events go into a single outbox drained by one
    task, so an event published after another is never delivered before it.
    """

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    async def stop(self) -> None:
        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self.active_connections[connection_id] = websocket
        logger.debug("Connection %s opened", connection_id)
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        self.active_connections.pop(connection_id, None)

    def publish(self, outgoing: Iterable[Outgoing], origin: Optional[str] = None) -> None:
        for event in outgoing:
            for connection_id in event.resolve(origin):
                self._outbox.put_nowait((connection_id, event.frame()))

    async def send_personal_message(self, message: dict, connection_id: str) -> bool:
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            return False
        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            # Treated as a disconnect: the receive loop sees the socket close.
            logger.warning("Send to %s failed: %s", connection_id, e)
            self.disconnect(connection_id)
            try:
                await websocket.close()
            except Exception:
                logger.debug("Close after failed send also failed for %s", connection_id)
            return False

    async def _drain(self) -> None:
        while True:
            item: Tuple[str, dict] = await self._outbox.get()
            connection_id, frame = item
            try:
                await self.send_personal_message(frame, connection_id)
            finally:
                self._outbox.task_done()


manager = ConnectionManager()
