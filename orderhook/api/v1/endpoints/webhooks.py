import time

from fastapi import APIRouter, Depends, Request

from orderhook.api.deps import get_ingestion_service
from orderhook.core.logging import get_logger
from orderhook.core.rate_limiter import client_key_from_headers
from orderhook.schemas.event import WebhookResponse
from orderhook.services.ingestion_service import IngestionService

router = APIRouter()
logger = get_logger(__name__)


@router.post("/order.created", response_model=WebhookResponse)
async def receive_order_created(
    request: Request,
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Receive an order.created webhook.

    **Security Requirements:**
    - X-Signature: sha256=<hmac_signature> (or bare hex) over the raw body
    - X-Timestamp: <unix_timestamp>, at most 5 minutes old

    **Payload Fields:**
    - **event_id**: Unique identifier, used for deduplication
    - **type**: Event type (``event_type`` also accepted)
    - **data**: Order data with ``order_id``, ``userId``, ``amount`` (``payload`` also accepted)

    A repeated event_id within the retention window returns 200 with
    ``duplicate=true``.
    """
    start_time = time.monotonic()

    # Signature is computed over these exact bytes
    raw_body = await request.body()
    result = await service.ingest(raw_body, request.headers, client_key_from_headers(request.headers))

    processing_time_ms = int((time.monotonic() - start_time) * 1000)
    logger.info("Webhook processed",
                event_id=result.event_id,
                duplicate=result.duplicate,
                processing_time_ms=processing_time_ms)

    return WebhookResponse(
        success=True,
        event_id=result.event_id,
        duplicate=result.duplicate,
        processing_time_ms=processing_time_ms,
    )
