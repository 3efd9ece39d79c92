from fastapi import Request

from orderhook.core.redis_client import RedisClient
from orderhook.services.event_queue import EventQueue
from orderhook.services.ingestion_service import IngestionService
from orderhook.services.metrics_service import MetricsService


def get_store(request: Request) -> RedisClient:
    """Store handle opened by the application lifespan."""
    return request.app.state.store


def get_event_queue(request: Request) -> EventQueue:
    return EventQueue(get_store(request))


def get_metrics_service(request: Request) -> MetricsService:
    return MetricsService(get_store(request))


def get_ingestion_service(request: Request) -> IngestionService:
    return IngestionService(get_store(request))
