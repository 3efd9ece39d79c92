from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from orderhook.api.deps import get_event_queue, get_store
from orderhook.core.config import settings
from orderhook.core.exceptions import StoreUnavailableError
from orderhook.core.redis_client import RedisClient
from orderhook.services.event_queue import EventQueue

router = APIRouter()


@router.get("")
async def health_check(
    store: RedisClient = Depends(get_store),
    queue: EventQueue = Depends(get_event_queue),
):
    """Store connectivity plus queue depths."""
    health_status = {
        "ok": True,
        "service": settings.APP_NAME,
        "version": settings.VERSION,
        "redis": "up",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if not await store.ping():
        health_status.update(ok=False, redis="down")
        return JSONResponse(status_code=503, content=health_status)

    try:
        health_status["queues"] = await queue.stats()
    except StoreUnavailableError as e:
        health_status.update(ok=False, redis="down", error=str(e))
        return JSONResponse(status_code=503, content=health_status)

    return health_status
