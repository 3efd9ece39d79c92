from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from orderhook.api.deps import get_event_queue
from orderhook.core.config import settings
from orderhook.core.exceptions import EventNotFoundError
from orderhook.core.logging import get_logger
from orderhook.schemas.event import ReplayRequest, ReplayResponse
from orderhook.services.event_queue import EventQueue

router = APIRouter()
logger = get_logger(__name__)


@router.get("/events")
async def get_recent_events(
    limit: int = Query(default=settings.RECENT_EVENTS_LIMIT, ge=1, le=200),
    queue: EventQueue = Depends(get_event_queue),
) -> List[Dict[str, Any]]:
    """Newest queued and dead-lettered events, most recent first."""
    events = await queue.recent(limit)
    return [
        {**event.model_dump(mode="json"), "delivery_handle": event.delivery_handle}
        for event in events
    ]


@router.post("/replay", response_model=ReplayResponse)
async def replay_event(
    request: ReplayRequest,
    queue: EventQueue = Depends(get_event_queue),
):
    """
    Re-queue an event by id with ``retry_count`` reset to 0.

    Works for any event whose dedup record is still retained, including
    dead-lettered ones; the dead-letter record itself is left in place.
    """
    if not await queue.replay(request.event_id):
        raise EventNotFoundError(request.event_id)

    logger.info("Event replay requested", event_id=request.event_id)
    return ReplayResponse(success=True, message="Event replayed successfully")
