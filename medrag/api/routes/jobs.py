"""Processing job status and progress event endpoints."""

import asyncio
import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from ...errors import NotFoundError
from ...schemas.job import ProcessingUpdate
from ...tracker import EventBus, ProcessingTracker
from ..deps import get_events, get_tracker

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/jobs", tags=["jobs"])


# Seconds between keep-alive comments on idle event streams
KEEPALIVE_INTERVAL = 15.0


def format_sse(update: ProcessingUpdate) -> str:
    """Serialize an update as a server-sent event."""
    return f"event: {update.status.value}\ndata: {update.model_dump_json()}\n\n"


@router.get("", response_model=list[ProcessingUpdate])
async def list_jobs(
    user_id: str = Query(..., description="Owner of the jobs"),
    tracker: ProcessingTracker = Depends(get_tracker),
):
    """Active processing jobs of a user."""
    return tracker.get_user_jobs(user_id)


@router.get("/{document_id}", response_model=ProcessingUpdate)
async def get_job(document_id: str, tracker: ProcessingTracker = Depends(get_tracker)):
    """Latest update of an active or recently finished job."""
    update = tracker.get_job_status(document_id) or tracker.get_final_status(document_id)
    if update is None:
        raise NotFoundError(f"No processing job for document {document_id}")
    return update


@router.get("/events/{user_id}")
async def stream_events(
    user_id: str,
    request: Request,
    events: EventBus = Depends(get_events),
):
    """Server-sent progress events for one user's jobs."""
    queue = events.subscribe(user_id)

    async def event_stream():
        try:
            while not await request.is_disconnected():
                try:
                    update = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_INTERVAL)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield format_sse(update)
        finally:
            events.unsubscribe(user_id, queue)
            logger.debug(f"Event stream closed for user {user_id}")

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
