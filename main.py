"""
at.hn Profile Pages - Main Application Entry Point.

This module builds the FastAPI application that serves Hacker News profile
pages at `<name>.at.hn`. A user opts in by putting their own address in their
HN bio; the service fetches the public profile, renders the bio safely and
serves it, shielding the upstream API with a small fetch dispatcher and a
three-tier page cache.

Key Responsibilities:
- Read `Settings` from the environment and set up logging.
- Construct the cache hierarchy, dispatcher, profile provider, content pipeline
  and page service once per application, and expose them on `app.state`.
- Install the middleware stack and mount the routers.
- Serve static files from the public directory when it exists.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from api.endpoints import router
from api.health_router import health_router, monitoring_router
from core.cache import CacheHierarchy, FileCacheBackend, MemoryCacheBackend
from core.config import Settings
from core.dispatcher import Dispatcher
from core.logging_config import get_logger, setup_logging
from core.middleware import (
    CorrelationMiddleware,
    ErrorHandlingMiddleware,
    PerformanceMiddleware,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
)
from core.rate_limiter import MemoryRateLimiter
from providers.profile_provider import HackerNewsProfileProvider, ProfileProvider
from services.content_pipeline import ContentPipeline
from services.page_service import ProfilePageService


def build_cache(settings: Settings) -> CacheHierarchy:
    return CacheHierarchy(
        short_term=MemoryCacheBackend(
            max_size=settings.short_term_max_size,
            ttl=settings.short_term_ttl,
            name="short_term",
        ),
        mid_term=MemoryCacheBackend(
            max_size=settings.mid_term_max_size,
            ttl=settings.mid_term_ttl,
            name="mid_term",
        ),
        persistent=FileCacheBackend(settings.profiles_dir),
    )


def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[ProfileProvider] = None,
) -> FastAPI:
    """Build the application; tests pass their own settings and provider"""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        setup_logging()
        logger = get_logger("api.startup")

        cache = build_cache(settings)
        logger.info(f"Cache tiers initialized, profiles in {settings.profiles_dir}")

        dispatcher = Dispatcher(
            concurrency=settings.queue_concurrency,
            interval=settings.queue_interval,
            interval_cap=settings.queue_interval_cap,
            max_backlog=settings.queue_max_backlog,
        )
        profile_provider = provider or HackerNewsProfileProvider(
            base_url=settings.upstream_base_url, timeout=settings.upstream_timeout
        )
        pipeline = ContentPipeline(
            karma_follow_min=settings.karma_link_follow_min,
            site_domain=settings.site_domain,
        )

        app.state.cache = cache
        app.state.dispatcher = dispatcher
        app.state.page_service = ProfilePageService(
            cache, dispatcher, profile_provider, pipeline, settings
        )

        logger.info(
            f"Service startup completed ({settings.environment}), port {settings.port}"
        )
        yield

        logger.info("Shutting down profile page service")

    app = FastAPI(
        title="at.hn Profile Pages",
        description="Opt-in Hacker News profile pages",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.rate_limiter = MemoryRateLimiter()

    # Added innermost first; CorrelationMiddleware ends up outermost
    app.add_middleware(
        RateLimitMiddleware,
        limiter=app.state.rate_limiter,
        requests=settings.ip_rate_limit_requests,
        window=settings.ip_rate_limit_window,
        paths=("/user",),
    )
    app.add_middleware(PerformanceMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CorrelationMiddleware)

    app.include_router(health_router)
    app.include_router(monitoring_router)
    app.include_router(router)

    # Static files LAST so they never shadow the API routes
    if settings.public_dir.is_dir():
        app.mount(
            "/",
            StaticFiles(directory=str(settings.public_dir), html=True),
            name="public",
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=app.state.settings.port,
        log_level="info",
    )
