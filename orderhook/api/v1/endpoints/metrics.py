from fastapi import APIRouter, Depends

from orderhook.api.deps import get_metrics_service
from orderhook.schemas.event import MetricsSnapshot
from orderhook.services.metrics_service import MetricsService

router = APIRouter()


@router.get("", response_model=MetricsSnapshot)
async def get_metrics(metrics: MetricsService = Depends(get_metrics_service)):
    """Counters for received, deduped, sent, failed and dead-lettered events."""
    return await metrics.snapshot()
