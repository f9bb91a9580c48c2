"""
WebSocket gateway at ``/ws``.

Frames are ``{"event": name, "data": {...}}`` in both directions. Workers
authenticate with their access token (``token`` query param or a Bearer
header); customers connect anonymously and identify through
``customer-join``.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from core.dependencies import get_broker, get_security
from core.websocket import manager
from domain import events
from domain.errors import AuthError
from domain.events import ConnectionContext
from handlers.ws.events import dispatch
from services.broker import SessionBroker
from utils.security import Security

logger = logging.getLogger(__name__)


def _bearer(websocket: WebSocket) -> Optional[str]:
    header = websocket.headers.get("authorization") or ""
    scheme, _, credentials = header.partition(" ")
    return credentials if scheme.lower() == "bearer" and credentials else None


class WebSocketRoutes():
    def __init__(self):
        self.router = APIRouter(tags=["WebSocket"])
        self.router.add_api_websocket_route("/ws", self.gateway)

    async def gateway(self,
                      websocket: WebSocket,
                      token: Optional[str] = Query(default=None),
                      broker: SessionBroker = Depends(get_broker),
                      security: Security = Depends(get_security)):
        connection_id = await manager.connect(websocket)
        ctx = ConnectionContext(connection_id)

        token = token or _bearer(websocket)
        if token:
            try:
                decoded = await security.verify_token(token)
                ctx.authenticated_worker_id = decoded["_id"]
            except AuthError as e:
                logger.info("Connection %s presented a bad token: %s", connection_id, e)

        reason = "disconnect"
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    frame = json.loads(raw)
                except ValueError:
                    manager.publish([events.reply(events.ERROR, {"error": "Malformed frame"})], origin=connection_id)
                    continue
                if not isinstance(frame, dict) or not isinstance(frame.get("data") or {}, dict):
                    manager.publish([events.reply(events.ERROR, {"error": "Malformed frame"})], origin=connection_id)
                    continue

                outgoing = await dispatch(broker, ctx, frame.get("event"), frame.get("data") or {})
                manager.publish(outgoing, origin=connection_id)
        except WebSocketDisconnect:
            pass
        except RuntimeError as e:
            # Raised once the socket was closed after a failed send.
            reason = f"transport error: {e}"
        finally:
            manager.disconnect(connection_id)
            manager.publish(await broker.disconnects.on_transport_lost(ctx, reason))
