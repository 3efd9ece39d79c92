from fastapi import APIRouter

from .endpoints import webhooks, admin, metrics, health

api_router = APIRouter()

api_router.include_router(webhooks.router, prefix="/webhook", tags=["webhooks"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
api_router.include_router(metrics.router, prefix="/metrics", tags=["metrics"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
