"""Control API routes."""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ...app import IApplication


class StatusResponse(BaseModel):
    """Response model for status."""

    status: str


class CleanupResponse(BaseModel):
    cleaned_count: int
    conversations_processed: int
    total_conversations: int
    errors: list[dict]


class ConversationCleanupResponse(BaseModel):
    conversation_id: str
    messages_removed: int


class ConversationResetResponse(BaseModel):
    conversation_id: str
    state: str
    queue_length: int
    processing_message_id: str | None = None


def create_control_router(app: IApplication) -> APIRouter:
    """Create control router."""
    router = APIRouter(prefix="/api/control", tags=["control"])

    @router.post("/reset", response_model=StatusResponse)
    async def reset_system() -> dict:
        """Drop all conversation state and message history."""
        try:
            await app.reset()
            return {"status": "ok"}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/cleanup", response_model=CleanupResponse)
    async def run_cleanup() -> dict:
        """Run one expiry sweep now."""
        try:
            report = await app.cleanup.sweep()
            return {
                "cleaned_count": report.cleaned_count,
                "conversations_processed": report.conversations_processed,
                "total_conversations": report.total_conversations,
                "errors": report.errors,
            }
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post(
        "/conversations/{conversation_id}/cleanup",
        response_model=ConversationCleanupResponse,
    )
    async def cleanup_conversation(conversation_id: str) -> dict:
        try:
            removed = await app.cleanup.cleanup_conversation(conversation_id)
            return {"conversation_id": conversation_id, "messages_removed": removed}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post(
        "/conversations/{conversation_id}/reset",
        response_model=ConversationResetResponse,
    )
    async def reset_conversation(conversation_id: str) -> dict:
        """Release a stuck conversation and move on to its next queued message."""
        try:
            message = await app.coordinator.force_process_next(conversation_id)
            status = await app.status.get_queue_status(conversation_id)
            return {
                "conversation_id": conversation_id,
                "state": status["state"],
                "queue_length": status["queue_length"],
                "processing_message_id": message.id if message else None,
            }
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    return router
