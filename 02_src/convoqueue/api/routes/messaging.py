"""Messaging routes: WebSocket protocol and HTTP intake."""

import json
from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

from ...app import IApplication
from ...errors import MessageNotFoundError, RetryLimitError
from ...logging_config import get_logger
from ...models import MessageType, format_conversation_id, parse_conversation_id
from ..connections import ConnectionManager

logger = get_logger(__name__)

ACK_EVENT = "ack"


class MessageRequest(BaseModel):
    """Request model for sending a message over HTTP."""

    content: str = ""
    type: str = MessageType.TEXT.value
    metadata: dict[str, Any] = Field(default_factory=dict)
    message_id: str | None = None
    temp_id: str | None = None
    timestamp: datetime | None = None


class IntakeResponse(BaseModel):
    """Response model for message intake."""

    status: str
    conversation_id: str
    message_id: str
    queue_position: int | None = None
    queue_length: int | None = None


class LikeRequest(BaseModel):
    liker_id: str
    is_liked: bool = True


class JoinFrame(BaseModel):
    conversation_id: str


class SendFrame(MessageRequest):
    character_id: str
    conversation_id: str | None = None


class RetryFrame(BaseModel):
    message_id: str
    character_id: str
    conversation_id: str | None = None


class LikeFrame(BaseModel):
    conversation_id: str
    message_id: str
    is_liked: bool = True


def _owned_conversation(user_id: str, conversation_id: str) -> str:
    owner, _ = parse_conversation_id(conversation_id)
    if owner != user_id:
        raise PermissionError(f"Conversation {conversation_id} does not belong to {user_id}")
    return conversation_id


def create_messaging_router(app: IApplication, connections: ConnectionManager) -> APIRouter:
    """Create messaging router."""
    router = APIRouter(tags=["messaging"])

    async def on_join(user_id: str, websocket: WebSocket, data: dict) -> dict:
        frame = JoinFrame(**data)
        conversation_id = _owned_conversation(user_id, frame.conversation_id)
        connections.join(conversation_id, websocket)
        return {
            "success": True,
            "conversation_id": conversation_id,
            "queue_status": await app.status.get_queue_status(conversation_id),
        }

    async def on_send(user_id: str, websocket: WebSocket, data: dict) -> dict:
        frame = SendFrame(**data)
        conversation_id = format_conversation_id(user_id, frame.character_id)
        if frame.conversation_id and frame.conversation_id != conversation_id:
            raise ValueError("conversation_id does not match user and character")
        connections.join(conversation_id, websocket)

        result = await app.coordinator.handle_message(
            user_id=user_id,
            character_id=frame.character_id,
            content=frame.content,
            type=frame.type,
            metadata=frame.metadata,
            message_id=frame.message_id,
            original_timestamp=frame.timestamp,
            temp_id=frame.temp_id,
        )
        return {"success": result.accepted, **result.to_dict()}

    async def on_retry(user_id: str, websocket: WebSocket, data: dict) -> dict:
        frame = RetryFrame(**data)
        try:
            result = await app.coordinator.retry_message(
                user_id, frame.character_id, frame.message_id
            )
        except RetryLimitError as e:
            return {
                "success": False,
                "retry_limit_reached": True,
                "message_id": e.message_id,
                "retry_count": e.retry_count,
                "max_retries": e.max_retries,
                "error": str(e),
            }
        return {"is_llm_error": result.retry_failed, **result.to_dict()}

    async def on_like(user_id: str, websocket: WebSocket, data: dict) -> dict:
        frame = LikeFrame(**data)
        conversation_id = _owned_conversation(user_id, frame.conversation_id)
        message = await app.coordinator.like_message(
            conversation_id, frame.message_id, user_id, frame.is_liked
        )
        return {"success": True, "message_id": message.id, "likes": message.likes}

    handlers = {
        "conversation:join": on_join,
        "message:send": on_send,
        "message:retry": on_retry,
        "message:like": on_like,
    }

    async def dispatch(user_id: str, websocket: WebSocket, event: str, data: dict) -> dict:
        handler = handlers.get(event)
        if handler is None:
            return {"success": False, "error": f"Unknown event: {event}"}
        try:
            return await handler(user_id, websocket, data)
        except ValidationError as e:
            return {"success": False, "error": f"Invalid payload: {e.errors()}"}
        except (ValueError, PermissionError, MessageNotFoundError) as e:
            return {"success": False, "error": str(e)}
        except Exception as e:
            logger.error(
                f"Error handling socket event {event}: {e}",
                extra={"context": {"user_id": user_id}},
                exc_info=True,
            )
            return {"success": False, "error": str(e)}

    @router.websocket("/ws/{user_id}")
    async def conversation_socket(websocket: WebSocket, user_id: str) -> None:
        """Bidirectional channel: requests with acks, plus relayed events."""
        await websocket.accept()
        logger.info(f"Socket connected for {user_id}")
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    await websocket.send_json(
                        {
                            "event": ACK_EVENT,
                            "ack_id": None,
                            "data": {"success": False, "error": "Malformed frame"},
                        }
                    )
                    continue

                ack = await dispatch(
                    user_id, websocket, frame.get("event", ""), frame.get("data") or {}
                )
                await websocket.send_json(
                    {"event": ACK_EVENT, "ack_id": frame.get("ack_id"), "data": ack}
                )
        except WebSocketDisconnect:
            logger.info(f"Socket disconnected for {user_id}")
        finally:
            connections.disconnect(websocket)

    @router.post(
        "/api/conversations/{user_id}/{character_id}/messages",
        response_model=IntakeResponse,
    )
    async def send_message(user_id: str, character_id: str, request: MessageRequest) -> dict:
        """Submit a message; 429 when the conversation queue is full."""
        try:
            result = await app.coordinator.handle_message(
                user_id=user_id,
                character_id=character_id,
                content=request.content,
                type=request.type,
                metadata=request.metadata,
                message_id=request.message_id,
                original_timestamp=request.timestamp,
                temp_id=request.temp_id,
            )
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

        if not result.accepted:
            raise HTTPException(status_code=429, detail=result.error)
        return result.to_dict()

    @router.get("/api/conversations/{conversation_id}/messages")
    async def get_messages(
        conversation_id: str, limit: int | None = Query(None, ge=1, le=500)
    ) -> list[dict]:
        """Message history in timestamp order."""
        try:
            messages = await app.storage.get_messages(conversation_id, limit=limit)
            return [m.to_dict() for m in messages]
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/api/conversations/{conversation_id}/messages/{message_id}/like")
    async def like_message(conversation_id: str, message_id: str, request: LikeRequest) -> dict:
        try:
            message = await app.coordinator.like_message(
                conversation_id, message_id, request.liker_id, request.is_liked
            )
            return {"message_id": message.id, "likes": message.likes}
        except MessageNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    return router
