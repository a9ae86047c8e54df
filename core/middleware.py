"""
Application Middleware for the profile page service.

Cross-cutting concerns that apply to every request. Registered in `main.py`
so that they run in this order, outermost first:

- `CorrelationMiddleware`: Assigns a correlation ID to every request (or reuses
  `X-Correlation-ID` / `X-Request-ID`) so log lines, including those of fetch
  jobs the request spawns, can be traced back to it.
- `SecurityHeadersMiddleware`: Adds standard security headers to every
  response, error fragments included.
- `ErrorHandlingMiddleware`: Turns every `ProfilePageException` into an HTML
  error fragment with the matching status code and remediation guidance, and
  any unexpected exception into a logged 500 fragment.
- `PerformanceMiddleware`: Logs request start/completion, adds an
  `X-Process-Time` header and flags slow requests.
- `RateLimitMiddleware`: Per-client-IP token bucket on the profile endpoint.
"""

import time
import uuid
from typing import Callable, Iterable, Optional

from fastapi import HTTPException, Request, Response
from fastapi.responses import HTMLResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .exceptions import ProfilePageException, RateLimitExceededError
from .logging_config import get_logger, set_correlation_id
from .rate_limiter import MemoryRateLimiter, RateLimitRule

logger = get_logger("core.middleware")

SLOW_REQUEST_SECONDS = 1.0
RATE_LIMIT_RULE = "user_pages"


def _render_error(request: Request, exc: Optional[ProfilePageException]) -> str:
    # Imported lazily: page templates live in the services layer
    from services.page_template import render_error_fragment

    settings = getattr(request.app.state, "settings", None)
    kwargs = {}
    if settings is not None:
        kwargs["site_domain"] = settings.site_domain
        kwargs["upstream_base_url"] = settings.upstream_base_url
    return render_error_fragment(exc, **kwargs)


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation IDs to requests"""

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = (
            request.headers.get("X-Correlation-ID")
            or request.headers.get("X-Request-ID")
            or str(uuid.uuid4())
        )

        set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id

        response = await call_next(request)

        response.headers["X-Correlation-ID"] = correlation_id
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware for centralized error handling"""

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except ProfilePageException as e:
            log = logger.warning if e.status_code < 500 else logger.error
            log(
                f"Application error: {str(e)}",
                extra={
                    "error_type": type(e).__name__,
                    "error_code": e.error_code,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            return HTMLResponse(_render_error(request, e), status_code=e.status_code)

        except HTTPException as e:
            logger.warning(
                f"HTTP exception: {e.status_code} - {e.detail}",
                extra={
                    "status_code": e.status_code,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            return HTMLResponse(
                _render_error(request, None), status_code=e.status_code
            )

        except Exception as e:
            logger.error(
                f"Unexpected error: {str(e)}",
                extra={
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                },
                exc_info=True,
            )
            return HTMLResponse(_render_error(request, None), status_code=500)


class PerformanceMiddleware(BaseHTTPMiddleware):
    """Middleware for performance monitoring and logging"""

    def __init__(self, app: ASGIApp, slow_threshold: float = SLOW_REQUEST_SECONDS):
        super().__init__(app)
        self.slow_threshold = slow_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        logger.info(
            f"Request started: {request.method} {request.url.path}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "query_params": dict(request.query_params),
                "user_agent": request.headers.get("user-agent"),
                "client_ip": get_client_ip(request),
            },
        )

        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

        logger.info(
            f"Request completed: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "process_time_ms": round(process_time * 1000, 2),
            },
        )

        if process_time > self.slow_threshold:
            logger.warning(
                f"Slow request detected: {request.method} {request.url.path}",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "process_time_ms": round(process_time * 1000, 2),
                    "threshold_exceeded": True,
                },
            )

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP rate limiting for the profile page endpoint"""

    def __init__(
        self,
        app: ASGIApp,
        limiter: Optional[MemoryRateLimiter] = None,
        requests: int = 50,
        window: int = 60,
        paths: Iterable[str] = ("/user",),
    ):
        super().__init__(app)
        self.limiter = limiter or MemoryRateLimiter()
        self.limiter.add_rule(RATE_LIMIT_RULE, RateLimitRule(requests, window))
        self.paths = tuple(paths)

    def applies_to(self, path: str) -> bool:
        return any(path == p or path.startswith(p + "/") for p in self.paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.applies_to(request.url.path):
            return await call_next(request)

        client_ip = get_client_ip(request)
        allowed, info = self.limiter.check_rate_limit(client_ip, RATE_LIMIT_RULE)

        if not allowed:
            logger.warning(
                f"Rate limit exceeded for {client_ip} on {request.url.path}",
                extra={
                    "client_ip": client_ip,
                    "rule": RATE_LIMIT_RULE,
                    "retry_after": info["retry_after"],
                },
            )
            error = RateLimitExceededError(client_ip, info["limit"], info["window"])
            retry_after = max(1, int(info["retry_after"]))
            return HTMLResponse(
                _render_error(request, error),
                status_code=error.status_code,
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(info["remaining"])
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.security_headers = {
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        for header, value in self.security_headers.items():
            response.headers[header] = value
        return response


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, considering proxy headers"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"
