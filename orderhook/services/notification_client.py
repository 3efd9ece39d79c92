from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from orderhook.core.config import settings
from orderhook.core.logging import get_logger
from orderhook.core.redis_client import RedisClient

logger = get_logger(__name__)


@dataclass
class NotificationTarget:
    """Either a device token or a broadcast topic."""

    token: Optional[str] = None
    topic: Optional[str] = None

    def as_message_field(self) -> Dict[str, str]:
        if self.token:
            return {"token": self.token}
        return {"topic": self.topic or settings.NOTIFICATION_DEFAULT_TOPIC}


class NotificationTransport(Protocol):
    async def send(self, target: NotificationTarget, title: str, body: str) -> bool:
        ...


class TokenStore:
    """Recipient device tokens kept in Redis."""

    key_prefix = "fcm:token:"

    def __init__(self, store: RedisClient):
        self.store = store

    async def get_token(self, user_id: str) -> Optional[str]:
        return await self.store.get(f"{self.key_prefix}{user_id}")

    async def set_token(self, user_id: str, token: str):
        await self.store.set(f"{self.key_prefix}{user_id}", token)


class PushNotificationClient:
    """Sends push notifications through the FCM HTTP v1 API."""

    def __init__(
        self,
        project_id: Optional[str] = None,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        dry_run: Optional[bool] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize push client.

        Args:
            project_id: Provider project the messages are sent under
            access_token: OAuth bearer token for the send endpoint
            base_url: API base URL
            timeout: Request timeout in seconds
            dry_run: Log and report success without any network call
            http_client: Shared client; one is created per send when omitted
        """
        self.project_id = project_id if project_id is not None else settings.PUSH_PROJECT_ID
        self.access_token = access_token if access_token is not None else settings.PUSH_ACCESS_TOKEN
        self.base_url = (base_url or settings.PUSH_API_BASE_URL).rstrip('/')
        self.timeout = settings.PUSH_TIMEOUT_SECONDS if timeout is None else timeout
        self.dry_run = settings.PUSH_DRY_RUN if dry_run is None else dry_run
        self.http_client = http_client

    @property
    def send_url(self) -> str:
        return f"{self.base_url}/v1/projects/{self.project_id}/messages:send"

    def build_message(self, target: NotificationTarget, title: str, body: str) -> Dict[str, Any]:
        return {
            "message": {
                "notification": {"title": title, "body": body},
                **target.as_message_field(),
            }
        }

    async def send(self, target: NotificationTarget, title: str, body: str) -> bool:
        """
        Deliver one notification.

        Returns:
            True on a 2xx response, False on any error; never raises
        """
        message = self.build_message(target, title, body)

        if self.dry_run:
            logger.info("Push notification dry run", message=message)
            return True

        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        try:
            if self.http_client is not None:
                response = await self.http_client.post(self.send_url, json=message, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.send_url, json=message, headers=headers)
        except httpx.HTTPError as e:
            logger.error("Push notification request failed", url=self.send_url, error=str(e))
            return False

        if response.status_code >= 400:
            logger.warning(
                "Push notification rejected",
                status_code=response.status_code,
                response_text=response.text[:500]
            )
            return False

        logger.info("Push notification sent", topic=target.topic, to_device=bool(target.token))
        return True
