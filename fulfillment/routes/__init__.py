"""Route modules for the fulfillment API."""

from fastapi import APIRouter

from .downloads import router as downloads_router
from .health import router as health_router
from .orders import router as orders_router
from .polls import router as polls_router


def create_api_router() -> APIRouter:
    """Create aggregated router with all non-auth API routes."""
    api_router = APIRouter()

    api_router.include_router(health_router)
    api_router.include_router(orders_router)
    api_router.include_router(downloads_router)
    api_router.include_router(polls_router)

    return api_router


__all__ = ["create_api_router"]
