"""
HTTP tests for the webhook, admin, metrics and health routes.
"""
import time

import pytest
from fastapi.testclient import TestClient

from orderhook.core.config import settings
from orderhook.main import create_app
from orderhook.services.event_queue import EventQueue
from orderhook.services.metrics_service import MetricsService
from orderhook.services.notification_client import TokenStore
from orderhook.workers.event_worker import EventWorker

from conftest import FakeStore, RecordingNotifier, order_body, signed_headers

WEBHOOK_URL = "/v1/webhook/order.created"


@pytest.fixture
def api_store():
    return FakeStore()


@pytest.fixture
def client(api_store):
    """Test client over an app bound to the in-memory store."""
    return TestClient(create_app(store=api_store))


def post_webhook(client, body: bytes, timestamp: int = None, secret: str = None, extra_headers=None):
    headers = signed_headers(
        body,
        timestamp if timestamp is not None else int(time.time()),
        secret=secret or settings.WEBHOOK_SECRET,
    )
    headers["Content-Type"] = "application/json"
    headers.update(extra_headers or {})
    return client.post(WEBHOOK_URL, content=body, headers=headers)


class TestWebhookRoute:
    """Test cases for POST /v1/webhook/order.created."""

    def test_accepts_valid_webhook(self, client):
        response = post_webhook(client, order_body())

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["event_id"] == "evt_1"
        assert data["duplicate"] is False
        assert isinstance(data["processing_time_ms"], int)

    def test_duplicate_returns_200(self, client):
        post_webhook(client, order_body())

        response = post_webhook(client, order_body())

        assert response.status_code == 200
        assert response.json()["duplicate"] is True

    def test_invalid_signature(self, client):
        response = post_webhook(client, order_body(), secret="not-the-secret")

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Invalid signature"}

    def test_missing_headers(self, client):
        response = client.post(WEBHOOK_URL, content=order_body())

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required headers"

    def test_stale_timestamp(self, client):
        response = post_webhook(client, order_body(), timestamp=int(time.time()) - 3600)

        assert response.status_code == 400
        assert response.json()["error"] == "Request too old"

    def test_invalid_json(self, client):
        response = post_webhook(client, b"{nope")

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON"

    def test_rate_limited(self, client):
        """Test the 11th request in a window is refused with a remaining header."""
        for index in range(settings.RATE_LIMIT_MAX_REQUESTS):
            response = post_webhook(client, order_body(event_id=f"evt_{index}"),
                                    extra_headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
            assert response.status_code == 200

        response = post_webhook(client, order_body(event_id="evt_over"),
                                extra_headers={"X-Forwarded-For": "203.0.113.7"})

        assert response.status_code == 429
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.json() == {"success": False, "error": "Rate limit exceeded"}

        other = post_webhook(client, order_body(event_id="evt_other"),
                             extra_headers={"X-Forwarded-For": "198.51.100.4"})
        assert other.status_code == 200

    def test_store_unavailable(self, client, api_store):
        api_store.available = False

        response = post_webhook(client, order_body())

        assert response.status_code == 500
        assert response.json()["success"] is False


class TestAdminRoutes:
    """Test cases for /v1/admin."""

    def test_recent_events(self, client):
        post_webhook(client, order_body(event_id="evt_a"))
        post_webhook(client, order_body(event_id="evt_b"))

        response = client.get("/v1/admin/events")

        assert response.status_code == 200
        events = response.json()
        assert {event["event_id"] for event in events} == {"evt_a", "evt_b"}
        assert all(event["status"] == "queued" for event in events)
        assert all(event["delivery_handle"] for event in events)

    def test_recent_events_limit(self, client):
        for index in range(3):
            post_webhook(client, order_body(event_id=f"evt_{index}"))

        response = client.get("/v1/admin/events", params={"limit": 2})

        assert len(response.json()) == 2

    def test_recent_events_limit_out_of_range(self, client):
        response = client.get("/v1/admin/events", params={"limit": 0})

        assert response.status_code == 400

    def test_replay(self, client, api_store):
        post_webhook(client, order_body())

        response = client.post("/v1/admin/replay", json={"event_id": "evt_1"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Event replayed successfully"}
        assert len(api_store.streams[settings.QUEUE_STREAM_NAME]) == 2

    def test_replay_unknown_event(self, client):
        response = client.post("/v1/admin/replay", json={"event_id": "nope"})

        assert response.status_code == 404
        assert response.json()["message"] == "Event not found"

    def test_replay_missing_event_id(self, client):
        response = client.post("/v1/admin/replay", json={})

        assert response.status_code == 400
        assert response.json()["success"] is False


class TestMetricsAndHealth:
    """Test cases for /v1/metrics, /v1/health and /."""

    def test_metrics(self, client):
        post_webhook(client, order_body())
        post_webhook(client, order_body())

        response = client.get("/v1/metrics")

        assert response.status_code == 200
        data = response.json()
        assert data["received"] == 1
        assert data["deduped"] == 1
        assert data["sent"] == 0
        assert "timestamp" in data

    def test_health_up(self, client):
        post_webhook(client, order_body())

        response = client.get("/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["redis"] == "up"
        assert data["queues"]["stream_length"] == 1

    def test_health_down(self, client, api_store):
        api_store.available = False

        response = client.get("/v1/health")

        assert response.status_code == 503
        assert response.json()["ok"] is False
        assert response.json()["redis"] == "down"

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "running"


class TestEndToEnd:
    """Webhook to worker to metrics over one shared store."""

    @pytest.mark.asyncio
    async def test_order_flow(self, api_store):
        client = TestClient(create_app(store=api_store))
        metrics = MetricsService(api_store)
        queue = EventQueue(api_store, metrics=metrics, clock=api_store.clock)
        notifier = RecordingNotifier(succeed=lambda target, title, body: "o2" not in body)
        worker = EventWorker(
            queue=queue,
            notifier=notifier,
            token_store=TokenStore(api_store),
            metrics=metrics,
            error_pause_seconds=0,
        )
        await queue.init()

        assert post_webhook(client, order_body("evt_1", order_id="o1")).json()["duplicate"] is False
        assert post_webhook(client, order_body("evt_1", order_id="o1")).json()["duplicate"] is True
        assert post_webhook(client, order_body("evt_2", order_id="o2")).json()["duplicate"] is False

        await worker.process_events()  # evt_1 delivered
        await worker.process_events()  # evt_2 attempt 1
        api_store.advance(1)
        await worker.process_events()  # evt_2 attempt 2
        api_store.advance(4)
        await worker.process_events()  # evt_2 attempt 3, dead-lettered

        assert client.get("/v1/metrics").json() | {"timestamp": None} == {
            "received": 2,
            "deduped": 1,
            "sent": 1,
            "failed": 2,
            "dlq": 1,
            "timestamp": None,
        }

        events = client.get("/v1/admin/events").json()
        dead = [event for event in events if event["status"] == "failed"]
        assert [event["event_id"] for event in dead] == ["evt_2"]
        assert dead[0]["retry_count"] == 3

        replay = client.post("/v1/admin/replay", json={"event_id": "evt_2"})
        assert replay.status_code == 200
        replayed = (await queue.checkout())[0]
        assert replayed.event_id == "evt_2"
        assert replayed.retry_count == 0
        assert len(await queue.dead_letters()) == 1
