"""Tracks which sockets are joined to which conversations."""

from fastapi import WebSocket

from ..event_bus import IEventBus
from ..logging_config import get_logger
from ..models import ConversationEvent

logger = get_logger(__name__)


class ConnectionManager:
    """Relays conversation events to every socket joined to the conversation."""

    def __init__(self):
        self._rooms: dict[str, set[WebSocket]] = {}
        self._attached: IEventBus | None = None

    def attach(self, event_bus: IEventBus) -> None:
        """Subscribe to the bus once per bus instance."""
        if self._attached is event_bus:
            return
        event_bus.subscribe_all(self.relay)
        self._attached = event_bus

    def join(self, conversation_id: str, websocket: WebSocket) -> None:
        self._rooms.setdefault(conversation_id, set()).add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        for conversation_id in list(self._rooms):
            sockets = self._rooms[conversation_id]
            sockets.discard(websocket)
            if not sockets:
                del self._rooms[conversation_id]

    def connection_count(self, conversation_id: str) -> int:
        return len(self._rooms.get(conversation_id, ()))

    async def relay(self, event: ConversationEvent) -> None:
        frame = event.to_wire()
        for websocket in list(self._rooms.get(event.conversation_id, ())):
            try:
                await websocket.send_json(frame)
            except Exception as e:
                logger.warning(
                    "Dropping socket after failed send",
                    extra={
                        "context": {
                            "conversation_id": event.conversation_id,
                            "event": event.type.value,
                            "error": str(e),
                        }
                    },
                )
                self.disconnect(websocket)
