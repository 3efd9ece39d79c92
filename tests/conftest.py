"""
Pytest configuration and fixtures for the order webhook service tests.
"""
import json
import time
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from redis.exceptions import ResponseError

from orderhook.core.exceptions import StoreUnavailableError
from orderhook.core.redis_client import DELAYED_TAG_SEPARATOR, RedisClient
from orderhook.core.webhook_security import WebhookSignatureVerifier
from orderhook.schemas.event import Event
from orderhook.services.event_queue import EventQueue
from orderhook.services.metrics_service import MetricsService
from orderhook.services.notification_client import NotificationTarget, TokenStore

TEST_SECRET = "test-secret-key"


class FakeStore(RedisClient):
    """
    In-memory stand-in for the Redis store handle.

    Implements the same methods as ``RedisClient`` with a manually advanced
    clock so TTLs, rate windows, visibility timeouts and retry due times can
    be exercised without sleeping. Set ``available = False`` to simulate an
    outage.
    """

    def __init__(self, start: Optional[float] = None):
        super().__init__(url="redis://fake:6379/0")
        self.now = start if start is not None else time.time()
        self.available = True
        self.values: Dict[str, Tuple[str, Optional[float]]] = {}
        self.streams: Dict[str, List[Tuple[str, Dict[str, str]]]] = {}
        self.groups: Dict[Tuple[str, str], dict] = {}
        self.lists: Dict[str, List[str]] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}
        self._seq = 0

    def clock(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    def _check(self):
        if not self.available:
            raise StoreUnavailableError("fake store offline")

    def _live(self, key: str) -> Optional[str]:
        item = self.values.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and expires_at <= self.now:
            del self.values[key]
            return None
        return value

    def pending_ids(self, stream: str, group: str) -> List[str]:
        return list(self.groups[(stream, group)]["pending"])

    async def connect(self):
        self._check()

    async def disconnect(self):
        pass

    async def ping(self) -> bool:
        return self.available

    # Keys and counters

    async def get(self, key):
        self._check()
        return self._live(key)

    async def set(self, key, value, ttl_seconds=None):
        self._check()
        self.values[key] = (value, self.now + ttl_seconds if ttl_seconds else None)

    async def set_if_absent(self, key, value, ttl_seconds):
        self._check()
        if self._live(key) is not None:
            return False
        self.values[key] = (value, self.now + ttl_seconds)
        return True

    async def incr(self, key):
        self._check()
        current = int(self._live(key) or 0) + 1
        expires_at = self.values[key][1] if key in self.values else None
        self.values[key] = (str(current), expires_at)
        return current

    async def incr_window(self, key, window_seconds):
        self._check()
        current = int(self._live(key) or 0) + 1
        if current == 1:
            self.values[key] = (str(current), self.now + window_seconds)
        else:
            self.values[key] = (str(current), self.values[key][1])
        return current

    async def mget(self, keys):
        self._check()
        return [self._live(key) for key in keys]

    # Streams

    async def ensure_group(self, stream, group):
        self._check()
        self.streams.setdefault(stream, [])
        self.groups.setdefault((stream, group), {"next": 0, "pending": {}})

    async def stream_add(self, stream, fields):
        self._check()
        self._seq += 1
        message_id = f"{int(self.now * 1000)}-{self._seq}"
        self.streams.setdefault(stream, []).append((message_id, dict(fields)))
        return message_id

    async def stream_read_group(self, stream, group, consumer, count=1, block_ms=None):
        self._check()
        state = self.groups.get((stream, group))
        if state is None:
            raise ResponseError("NOGROUP No such key or consumer group")
        entries = self.streams.get(stream, [])[state["next"]:state["next"] + count]
        state["next"] += len(entries)
        for message_id, _ in entries:
            state["pending"][message_id] = (consumer, self.now)
        return list(entries)

    async def stream_autoclaim(self, stream, group, consumer, min_idle_ms, count=1):
        self._check()
        state = self.groups.get((stream, group))
        if state is None:
            raise ResponseError("NOGROUP No such key or consumer group")
        by_id = dict(self.streams.get(stream, []))
        claimed = []
        for message_id, (_owner, delivered_at) in list(state["pending"].items()):
            if len(claimed) >= count:
                break
            if (self.now - delivered_at) * 1000 >= min_idle_ms:
                state["pending"][message_id] = (consumer, self.now)
                claimed.append((message_id, by_id[message_id]))
        return claimed

    async def stream_ack(self, stream, group, message_id):
        self._check()
        pending = self.groups[(stream, group)]["pending"]
        return 1 if pending.pop(message_id, None) is not None else 0

    async def stream_rev_range(self, stream, count):
        self._check()
        return list(reversed(self.streams.get(stream, [])))[:count]

    async def stream_length(self, stream):
        self._check()
        return len(self.streams.get(stream, []))

    async def stream_pending_count(self, stream, group):
        self._check()
        state = self.groups.get((stream, group))
        return len(state["pending"]) if state else 0

    # Lists

    async def list_push(self, name, value):
        self._check()
        self.lists.setdefault(name, []).insert(0, value)

    async def list_range(self, name, start, end):
        self._check()
        items = self.lists.get(name, [])
        return items[start:] if end == -1 else items[start:end + 1]

    async def list_length(self, name):
        self._check()
        return len(self.lists.get(name, []))

    # Delayed messages

    async def queue_delayed(self, name, member, due_at, tag):
        self._check()
        self.zsets.setdefault(name, {})[f"{tag}{DELAYED_TAG_SEPARATOR}{member}"] = due_at

    async def promote_delayed(self, name, stream, now, limit=100):
        self._check()
        zset = self.zsets.get(name, {})
        due = sorted((score, member) for member, score in zset.items() if score <= now)[:limit]
        for _score, member in due:
            await self.stream_add(stream, {"data": member.partition(DELAYED_TAG_SEPARATOR)[2]})
            del zset[member]
        return len(due)

    async def delayed_count(self, name):
        self._check()
        return len(self.zsets.get(name, {}))


class RecordingNotifier:
    """Notification transport double that records every send."""

    def __init__(self, succeed=True):
        # bool, or callable(target, title, body) -> bool
        self.succeed = succeed
        self.calls: List[Tuple[NotificationTarget, str, str]] = []

    async def send(self, target, title, body):
        self.calls.append((target, title, body))
        if callable(self.succeed):
            return self.succeed(target, title, body)
        return self.succeed


def signed_headers(raw_body: bytes, timestamp: int, secret: str = TEST_SECRET) -> Dict[str, str]:
    return {
        "X-Signature": WebhookSignatureVerifier.generate_signature(raw_body, secret),
        "X-Timestamp": str(timestamp),
    }


def order_body(event_id: str = "evt_1", order_id: str = "o1", user_id: str = "u1", amount: float = 42) -> bytes:
    return json.dumps({
        "event_id": event_id,
        "type": "order.created",
        "data": {"order_id": order_id, "userId": user_id, "amount": amount},
    }).encode("utf-8")


@pytest.fixture
def store():
    """In-memory store handle."""
    return FakeStore(start=1_700_000_000.0)


@pytest.fixture
def metrics(store):
    return MetricsService(store)


@pytest_asyncio.fixture
async def event_queue(store, metrics):
    """Event queue bound to the fake store and its clock, group initialised."""
    queue = EventQueue(
        store,
        metrics=metrics,
        dedup_ttl_seconds=24 * 60 * 60,
        visibility_timeout_seconds=300,
        clock=store.clock,
    )
    await queue.init()
    return queue


@pytest.fixture
def token_store(store):
    return TokenStore(store)


@pytest.fixture
def sample_event(store):
    """Sample order event."""
    return Event(
        event_id="evt_1",
        event_type="order.created",
        payload={"order_id": "o1", "userId": "u1", "amount": 42},
        received_at=int(store.now),
    )
