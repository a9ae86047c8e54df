"""
Health and Monitoring Router.

Public, unauthenticated endpoints for health checks and operational state.

Endpoints Provided:
- `/healthcheck`: A lightweight check that the service is running.
- `/monitoring/ping`: A simple ping endpoint for connectivity testing.
- `/monitoring/cache/stats`: Hit/miss counters and sizes for every cache tier.
- `/monitoring/dispatcher`: Fetch dispatcher backlog, concurrency and totals.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends

from core.cache import CacheHierarchy
from core.dispatcher import Dispatcher
from core.logging_config import get_logger

from .dependencies import get_cache_hierarchy, get_dispatcher

logger = get_logger(__name__)

VERSION = "1.0.0"
SERVICE_NAME = "at.hn profile pages"

health_router = APIRouter(tags=["Health & Monitoring"])

monitoring_router = APIRouter(prefix="/monitoring", tags=["Health & Monitoring"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@health_router.get("/healthcheck")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint

    Returns:
        Dict with status, timestamp, and version info
    """
    logger.debug("Health check requested")

    return {
        "status": "healthy",
        "timestamp": _now(),
        "version": VERSION,
        "service": SERVICE_NAME,
    }


@monitoring_router.get("/ping")
async def ping() -> Dict[str, str]:
    """Simple ping endpoint for connectivity testing"""
    logger.debug("Ping requested")
    return {"message": "pong", "timestamp": _now(), "version": VERSION}


@monitoring_router.get("/cache/stats")
async def get_cache_stats(
    cache: CacheHierarchy = Depends(get_cache_hierarchy),
) -> Dict[str, Any]:
    """Get statistics for every cache tier"""
    logger.info("Cache stats requested")

    try:
        stats = await cache.stats()
        return {"cache_stats": stats, "timestamp": _now()}
    except Exception as e:
        logger.error(f"Cache stats collection failed: {e}")
        return {
            "error": "Cache stats temporarily unavailable",
            "message": str(e),
            "timestamp": _now(),
        }


@monitoring_router.get("/dispatcher")
async def get_dispatcher_stats(
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> Dict[str, Any]:
    """Get fetch dispatcher statistics"""
    logger.info("Dispatcher stats requested")
    return {"dispatcher": dispatcher.stats(), "timestamp": _now()}
