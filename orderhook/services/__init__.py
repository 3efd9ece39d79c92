from .metrics_service import MetricsService
from .event_queue import EventQueue
from .ingestion_service import IngestionService, IngestionResult
from .notification_client import (
    NotificationTarget, NotificationTransport, PushNotificationClient, TokenStore
)

__all__ = [
    "MetricsService",
    "EventQueue",
    "IngestionService",
    "IngestionResult",
    "NotificationTarget",
    "NotificationTransport",
    "PushNotificationClient",
    "TokenStore",
]
