"""WebSocket transport for ChatStore."""

import asyncio
import json
import uuid
from typing import Callable

import websockets
from websockets.exceptions import ConnectionClosed

from ..errors import SendError
from ..logging_config import get_logger

logger = get_logger(__name__)

EventListener = Callable[[str, dict], None]

ACK_EVENT = "ack"


class WebSocketChatClient:
    """Speaks the `/ws/{user_id}` protocol.

    Requests are frames `{"event", "ack_id", "data"}`; the server answers
    each with `{"event": "ack", "ack_id", "data"}`. Any other frame is a
    conversation event and goes to the registered listeners.
    """

    def __init__(self, url: str, ack_timeout: float = 30.0):
        self._url = url
        self._ack_timeout = ack_timeout
        self._ws = None
        self._reader: asyncio.Task | None = None
        self._pending: dict[str, asyncio.Future] = {}
        self._listeners: list[EventListener] = []

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def on_event(self, listener: EventListener) -> None:
        """Register a listener, e.g. ChatStore.handle_event."""
        self._listeners.append(listener)

    async def connect(self) -> None:
        self._ws = await websockets.connect(self._url, ping_interval=30, ping_timeout=10)
        self._reader = asyncio.create_task(self._read_loop())
        logger.info(f"Connected to {self._url}")

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        self._ws = None

    async def join(self, conversation_id: str) -> dict:
        """Subscribe this socket to a conversation's events."""
        return await self._request("conversation:join", {"conversation_id": conversation_id})

    async def send_message(self, payload: dict) -> dict:
        return await self._request("message:send", payload)

    async def retry_message(
        self, conversation_id: str, message_id: str, character_id: str
    ) -> dict:
        return await self._request(
            "message:retry",
            {
                "conversation_id": conversation_id,
                "message_id": message_id,
                "character_id": character_id,
            },
        )

    async def like_message(
        self, conversation_id: str, message_id: str, is_liked: bool
    ) -> dict:
        return await self._request(
            "message:like",
            {
                "conversation_id": conversation_id,
                "message_id": message_id,
                "is_liked": is_liked,
            },
        )

    async def _request(self, event: str, data: dict) -> dict:
        if self._ws is None:
            raise SendError("Not connected")

        ack_id = str(uuid.uuid4())
        future = asyncio.get_running_loop().create_future()
        self._pending[ack_id] = future

        try:
            await self._ws.send(json.dumps({"event": event, "ack_id": ack_id, "data": data}))
            return await asyncio.wait_for(future, timeout=self._ack_timeout)
        except asyncio.TimeoutError as e:
            raise SendError(f"No acknowledgement for {event}") from e
        except ConnectionClosed as e:
            raise SendError(f"Connection closed: {e}") from e
        finally:
            self._pending.pop(ack_id, None)

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"Dropping malformed frame: {raw[:100]!r}")
                    continue
                self._dispatch(frame)
        except ConnectionClosed as e:
            logger.info(f"Connection closed: {e}")
        finally:
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(SendError("Connection closed"))

    def _dispatch(self, frame: dict) -> None:
        event = frame.get("event")
        data = frame.get("data") or {}

        if event == ACK_EVENT:
            future = self._pending.get(frame.get("ack_id"))
            if future is not None and not future.done():
                future.set_result(data)
            return

        for listener in self._listeners:
            try:
                listener(event, data)
            except Exception as e:
                logger.error(f"Event listener error for {event}: {e}", exc_info=True)
