"""Observability API routes."""

from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ...app import IApplication


class QueueStatsResponse(BaseModel):
    """Response model for aggregate queue statistics."""

    total_conversations: int
    by_state: dict[str, int]
    total_queued_messages: int
    average_queue_length: float
    longest_queue: int
    stuck_processing: int


def create_observability_router(app: IApplication) -> APIRouter:
    """Create observability router."""
    router = APIRouter(prefix="/api/conversations", tags=["observability"])

    @router.get("/states")
    async def get_all_states() -> list[dict[str, Any]]:
        """Monitoring view of every live conversation."""
        try:
            return await app.status.get_all_states()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/stats", response_model=QueueStatsResponse)
    async def get_stats() -> dict:
        try:
            return await app.status.get_stats()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/{conversation_id}/queue")
    async def get_queue_status(conversation_id: str) -> dict[str, Any]:
        """Queue status for one conversation."""
        try:
            return await app.status.get_queue_status(conversation_id)
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    return router
