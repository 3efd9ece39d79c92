from dataclasses import dataclass
from typing import Mapping, Optional

from orderhook.core.config import settings
from orderhook.core.logging import get_logger
from orderhook.core.redis_client import RedisClient

logger = get_logger(__name__)

DEFAULT_CLIENT_KEY = "127.0.0.1"


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int


class RateLimiter:
    """
    Fixed-window request counter per client address.

    Each key's window opens on its first request after the previous window
    expired; windows are not aligned to wall-clock boundaries.
    """

    key_prefix = "rate_limit:"

    def __init__(
        self,
        store: RedisClient,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ):
        self.store = store
        self.max_requests = settings.RATE_LIMIT_MAX_REQUESTS if max_requests is None else max_requests
        self.window_seconds = settings.RATE_LIMIT_WINDOW_SECONDS if window_seconds is None else window_seconds

    async def check(self, client_key: str) -> RateLimitResult:
        current = await self.store.incr_window(f"{self.key_prefix}{client_key}", self.window_seconds)
        result = RateLimitResult(
            allowed=current <= self.max_requests,
            remaining=max(0, self.max_requests - current),
        )
        if not result.allowed:
            logger.warning("Rate limit exceeded", client=client_key, count=current)
        return result


def client_key_from_headers(headers: Mapping[str, str]) -> str:
    """Resolve the rate-limit key from proxy headers."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        # "client, proxy1, proxy2"
        return forwarded.split(",")[0].strip() or DEFAULT_CLIENT_KEY
    return headers.get("x-real-ip") or DEFAULT_CLIENT_KEY
