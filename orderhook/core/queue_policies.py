from dataclasses import dataclass, field
from typing import Dict

from orderhook.core.config import settings


@dataclass
class RetryPolicy:
    max_retries: int
    backoff_schedule: Dict[int, int] = field(default_factory=dict)
    visibility_timeout_seconds: int = 300

    def backoff_for(self, attempt: int) -> int:
        """Delay in seconds before re-queuing after failed ``attempt`` (1-based)."""
        if not self.backoff_schedule:
            return 0
        if attempt in self.backoff_schedule:
            return self.backoff_schedule[attempt]
        # Past the table: keep using the last delay
        return self.backoff_schedule[max(self.backoff_schedule)]

    def is_exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_retries


DEFAULT_POLICY = RetryPolicy(
    max_retries=settings.MAX_RETRY_ATTEMPTS,
    backoff_schedule=dict(settings.RETRY_BACKOFF_SCHEDULE),
    visibility_timeout_seconds=settings.QUEUE_VISIBILITY_TIMEOUT_SECONDS,
)
