from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from orderhook.core.config import settings
from orderhook.core.exceptions import (
    EventNotFoundError,
    RejectionReason,
    StoreUnavailableError,
    WebhookRejected,
)
from orderhook.core.logging import setup_logging
from orderhook.core.redis_client import RedisClient
from orderhook.schemas.common import ErrorResponse
from orderhook.api.v1.router import api_router


logger = logging.getLogger(__name__)


def create_app(store: Optional[RedisClient] = None) -> FastAPI:
    """
    Build the API application.

    When ``store`` is given it is used as-is and its lifecycle belongs to
    the caller; otherwise a ``RedisClient`` is opened on startup and closed
    on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "store", None) is None
        if owned:
            app.state.store = RedisClient()
            try:
                await app.state.store.connect()
            except StoreUnavailableError as e:
                # Keep serving; /v1/health reports the outage
                logger.error(f"Redis unavailable at startup: {e}")
        logger.info(f"{settings.APP_NAME} startup completed")

        yield

        if owned:
            await app.state.store.disconnect()
        logger.info(f"{settings.APP_NAME} shutdown completed")

    app = FastAPI(
        title=settings.APP_NAME,
        description="""
        **Order Webhook Service**

        Receives signed `order.created` webhooks, deduplicates them by
        `event_id` and queues them on a Redis Stream. A separate worker
        (`orderhook-worker`) delivers one push notification per event with
        bounded retries and a dead-letter queue.
        """,
        version=settings.VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    if store is not None:
        app.state.store = store

    # Dashboard polls the admin and metrics routes from the browser
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/v1")

    @app.get("/")
    async def root():
        """Root endpoint with service information."""
        return {
            "service": settings.APP_NAME,
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "status": "running",
            "docs_url": "/docs",
            "health_check": "/v1/health",
            "webhook": "/v1/webhook/order.created",
        }

    @app.exception_handler(WebhookRejected)
    async def webhook_rejected_handler(request: Request, exc: WebhookRejected):
        headers = {}
        if exc.reason is RejectionReason.RATE_LIMITED and exc.remaining is not None:
            headers["X-RateLimit-Remaining"] = str(exc.remaining)
        logger.info(f"Webhook rejected: {exc.reason.value} ({exc.detail})")
        return JSONResponse(
            status_code=exc.reason.status_code,
            content=ErrorResponse(error=exc.detail).model_dump(exclude_none=True),
            headers=headers,
        )

    @app.exception_handler(EventNotFoundError)
    async def event_not_found_handler(request: Request, exc: EventNotFoundError):
        return JSONResponse(
            status_code=404,
            content=ErrorResponse(message="Event not found", error="Event not found").model_dump(exclude_none=True),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="Invalid request body").model_dump(exclude_none=True),
        )

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
        logger.error(f"Store unavailable: {exc}")
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error="Internal server error").model_dump(exclude_none=True),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """HTTP exception handler."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": exc.detail,
                "status_code": exc.status_code
            }
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error",
                "details": str(exc) if settings.DEBUG else "An unexpected error occurred"
            }
        )

    return app


# Setup logging
setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "orderhook.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
