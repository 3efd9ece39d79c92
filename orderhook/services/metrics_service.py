from typing import Dict

from orderhook.schemas.event import MetricsSnapshot
from .base_service import BaseService

METRIC_NAMES = ("received", "deduped", "sent", "failed", "dlq")


class MetricsService(BaseService):
    """Process-wide monotonic counters kept in Redis next to the queue."""

    key_prefix = "metrics:"

    async def increment(self, metric: str) -> int:
        if metric not in METRIC_NAMES:
            raise ValueError(f"Unknown metric: {metric}")
        return await self.store.incr(f"{self.key_prefix}{metric}")

    async def get_metrics(self) -> Dict[str, int]:
        values = await self.store.mget([f"{self.key_prefix}{name}" for name in METRIC_NAMES])
        return {name: int(value or 0) for name, value in zip(METRIC_NAMES, values)}

    async def snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(**await self.get_metrics())
