"""Store statistics endpoint."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...store.base import DocumentStore
from ...tracker import ProcessingTracker
from ..deps import get_store, get_tracker


router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("")
async def get_stats(
    user_id: Optional[str] = Query(None, description="Limit statistics to one user"),
    store: DocumentStore = Depends(get_store),
    tracker: ProcessingTracker = Depends(get_tracker),
):
    """Document, chunk, and table statistics."""
    stats = await store.stats(user_id)
    stats["active_jobs"] = (
        len(tracker.get_user_jobs(user_id)) if user_id else tracker.active_count
    )
    return stats
