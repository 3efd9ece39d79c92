from typing import Dict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Order Webhook Service"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50

    # Webhook Security
    WEBHOOK_SECRET: str = "webhook-secret-change-in-production"
    WEBHOOK_TOLERANCE_SECONDS: int = 300  # 5 minutes max age for X-Timestamp

    # Deduplication
    DEDUP_TTL_SECONDS: int = 24 * 60 * 60

    # Rate Limiting (fixed window per client address)
    RATE_LIMIT_WINDOW_SECONDS: int = 10
    RATE_LIMIT_MAX_REQUESTS: int = 10

    # Retry Settings
    MAX_RETRY_ATTEMPTS: int = 3
    RETRY_BACKOFF_SCHEDULE: Dict[int, int] = {
        1: 1,
        2: 4,
        3: 10,
    }

    # Queue Settings
    QUEUE_STREAM_NAME: str = "orders-stream"
    QUEUE_DLQ_NAME: str = "orders-dlq"
    QUEUE_CONSUMER_GROUP: str = "workers"
    QUEUE_CONSUMER_NAME: str = "worker-1"
    QUEUE_VISIBILITY_TIMEOUT_SECONDS: int = 300

    # Worker Settings
    WORKER_BATCH_SIZE: int = 1
    WORKER_BLOCK_TIMEOUT_MS: int = 1000
    WORKER_ERROR_PAUSE_SECONDS: float = 5.0
    WORKER_SHUTDOWN_GRACE_SECONDS: float = 2.0

    # Push Notifications
    NOTIFICATION_DEFAULT_TOPIC: str = "orders"
    PUSH_DRY_RUN: bool = False
    PUSH_API_BASE_URL: str = "https://fcm.googleapis.com"
    PUSH_PROJECT_ID: str = ""
    PUSH_ACCESS_TOKEN: str = ""
    PUSH_TIMEOUT_SECONDS: int = 10

    # Admin
    RECENT_EVENTS_LIMIT: int = 20

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
