from fastapi import APIRouter, Depends, Query, status

from core.dependencies import get_message_repository
from domain.message.message import ChatMessage
from repositories.message import MessageRepository


class ChatRoutes():
    def __init__(self):
        self.router = APIRouter(prefix="/api/chat", tags=["Chats"])
        self._register_routes()

    def _register_routes(self):
        self.router.add_api_route("/{room_id}/messages", self.history, methods=["GET"], status_code=status.HTTP_200_OK)

    async def history(self,
                      room_id: str,
                      limit: int = Query(50, ge=1, le=200),
                      repository: MessageRepository = Depends(get_message_repository)) -> dict:
        """Stored messages of a room, oldest first."""
        docs = await repository.get_history(room_id, limit)
        return {"messages": [ChatMessage.from_dict(doc).to_event() for doc in docs]}
