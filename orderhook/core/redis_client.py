from typing import Any, Dict, List, Optional, Tuple
import redis.asyncio as redis
from redis.asyncio import ConnectionPool
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError
import logging

from orderhook.core.config import settings
from orderhook.core.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

StreamEntry = Tuple[str, Dict[str, str]]

DELAYED_TAG_SEPARATOR = "|"


# INCR and the window expiry must land together, otherwise a crash between
# the two leaves a counter that never resets.
INCR_WINDOW_SCRIPT = """
    local current = redis.call('INCR', KEYS[1])
    if current == 1 then
        redis.call('EXPIRE', KEYS[1], ARGV[1])
    end
    return current
"""

# Move due members of the retry zset onto the stream tail in one step.
# Members are "{tag}|{payload}"; only the payload is appended.
PROMOTE_DELAYED_SCRIPT = """
    local due = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, ARGV[2])
    for _, member in ipairs(due) do
        local payload = member
        local sep = string.find(member, '|', 1, true)
        if sep then
            payload = string.sub(member, sep + 1)
        end
        redis.call('XADD', KEYS[2], '*', 'data', payload)
        redis.call('ZREM', KEYS[1], member)
    end
    return #due
"""


class RedisClient:
    """
    Store handle for dedup records, the event stream, the dead-letter list,
    scheduled retries and counters.

    One instance per process, opened with ``connect()`` and closed with
    ``disconnect()`` (or used as an async context manager). Connection and
    timeout failures surface as ``StoreUnavailableError``.
    """

    def __init__(self, url: Optional[str] = None, max_connections: Optional[int] = None):
        self.url = url or settings.REDIS_URL
        self.max_connections = settings.REDIS_MAX_CONNECTIONS if max_connections is None else max_connections
        self.pool: Optional[ConnectionPool] = None
        self.client: Optional[redis.Redis] = None

    async def connect(self):
        """Initialize Redis connection."""
        try:
            self.pool = ConnectionPool.from_url(
                self.url,
                max_connections=self.max_connections,
                decode_responses=True
            )
            self.client = redis.Redis(connection_pool=self.pool)
            # Test connection
            await self.client.ping()
            logger.info("Redis connection established")
        except RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise StoreUnavailableError(str(e)) from e

    async def disconnect(self):
        """Close Redis connection."""
        if self.client:
            await self.client.aclose()
            self.client = None
        if self.pool:
            await self.pool.disconnect()
            self.pool = None
        logger.info("Redis connection closed")

    async def __aenter__(self) -> "RedisClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.disconnect()

    async def _execute(self, command: str, *args, **kwargs) -> Any:
        if self.client is None:
            raise StoreUnavailableError("Redis client is not connected")
        try:
            return await getattr(self.client, command)(*args, **kwargs)
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis {command} failed: {e}")
            raise StoreUnavailableError(str(e)) from e

    async def ping(self) -> bool:
        """Return True when Redis answers PING."""
        try:
            return bool(await self._execute("ping"))
        except (StoreUnavailableError, RedisError):
            return False

    # Keys and counters

    async def get(self, key: str) -> Optional[str]:
        return await self._execute("get", key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None):
        await self._execute("set", key, value, ex=ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """
        Atomic SET NX EX.
        Returns True if the key was written, False if it already existed.
        """
        result = await self._execute("set", key, value, nx=True, ex=ttl_seconds)
        return bool(result)

    async def incr(self, key: str) -> int:
        return int(await self._execute("incr", key))

    async def incr_window(self, key: str, window_seconds: int) -> int:
        """Increment a counter, starting its expiry when the count becomes 1."""
        result = await self._execute("eval", INCR_WINDOW_SCRIPT, 1, key, window_seconds)
        return int(result)

    async def mget(self, keys: List[str]) -> List[Optional[str]]:
        return await self._execute("mget", keys)

    # Streams

    async def ensure_group(self, stream: str, group: str):
        """Create the consumer group (and the stream) if missing."""
        try:
            await self._execute("xgroup_create", stream, group, id="0", mkstream=True)
            logger.info(f"Consumer group {group} created on {stream}")
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def stream_add(self, stream: str, fields: Dict[str, str]) -> str:
        return str(await self._execute("xadd", stream, fields))

    async def stream_read_group(
        self,
        stream: str,
        group: str,
        consumer: str,
        count: int = 1,
        block_ms: Optional[int] = None,
    ) -> List[StreamEntry]:
        """Claim up to ``count`` never-delivered entries for ``consumer``."""
        response = await self._execute(
            "xreadgroup",
            groupname=group,
            consumername=consumer,
            streams={stream: ">"},
            count=count,
            block=block_ms,
        )
        entries: List[StreamEntry] = []
        for _stream_key, messages in response or []:
            for message_id, fields in messages:
                entries.append((message_id, fields))
        return entries

    async def stream_autoclaim(
        self,
        stream: str,
        group: str,
        consumer: str,
        min_idle_ms: int,
        count: int = 1,
    ) -> List[StreamEntry]:
        """Take over entries another consumer left pending for too long."""
        response = await self._execute(
            "xautoclaim",
            stream,
            group,
            consumer,
            min_idle_ms,
            start_id="0-0",
            count=count,
        )
        messages = response[1] if response else []
        # Entries trimmed from the stream come back without fields.
        return [(message_id, fields) for message_id, fields in messages if fields]

    async def stream_ack(self, stream: str, group: str, message_id: str) -> int:
        return int(await self._execute("xack", stream, group, message_id))

    async def stream_rev_range(self, stream: str, count: int) -> List[StreamEntry]:
        return await self._execute("xrevrange", stream, max="+", min="-", count=count)

    async def stream_length(self, stream: str) -> int:
        return int(await self._execute("xlen", stream))

    async def stream_pending_count(self, stream: str, group: str) -> int:
        try:
            summary = await self._execute("xpending", stream, group)
        except ResponseError:
            # NOGROUP before the worker has initialised the group
            return 0
        return int(summary.get("pending", 0)) if summary else 0

    # Lists

    async def list_push(self, name: str, value: str):
        await self._execute("lpush", name, value)

    async def list_range(self, name: str, start: int, end: int) -> List[str]:
        return await self._execute("lrange", name, start, end)

    async def list_length(self, name: str) -> int:
        return int(await self._execute("llen", name))

    # Delayed (scheduled) messages

    async def queue_delayed(self, name: str, member: str, due_at: float, tag: str):
        """
        Add member to a delayed zset scored by due timestamp.

        The zset member is ``{tag}|{member}``: equal payloads with different
        tags are kept apart; re-adding an identical tag and payload only moves
        the score.
        """
        await self._execute("zadd", name, {f"{tag}{DELAYED_TAG_SEPARATOR}{member}": due_at})

    async def promote_delayed(self, name: str, stream: str, now: float, limit: int = 100) -> int:
        """Append due delayed members to ``stream`` and drop them from the zset."""
        result = await self._execute("eval", PROMOTE_DELAYED_SCRIPT, 2, name, stream, now, limit)
        return int(result or 0)

    async def delayed_count(self, name: str) -> int:
        return int(await self._execute("zcard", name))
