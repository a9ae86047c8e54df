"""
API Endpoints for profile pages.

Endpoints Provided:
- `/user?user=<name>`: Serves the profile page for an HN account. The name may
  be given decoded (`Rally_Driver`) or encoded (`0.rally.1.0.driver`); both
  address the same page. Adding `refresh` (with or without a value) skips the
  longer-lived cache tiers, refetches the profile and, when that finishes in
  time, redirects back to the page's canonical address.

Failures are raised as `ProfilePageException`s and rendered as HTML fragments by
the error handling middleware.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from core.logging_config import get_logger
from services.page_service import ProfilePageService

from .dependencies import get_page_service

logger = get_logger(__name__)

router = APIRouter(tags=["Profile Pages"])


@router.get("/user", response_class=HTMLResponse)
@router.get("/user/", response_class=HTMLResponse, include_in_schema=False)
async def user_page(
    request: Request,
    user: Optional[str] = Query(default=None),
    page_service: ProfilePageService = Depends(get_page_service),
) -> Response:
    """Serve a profile page from cache or a fresh fetch"""
    refresh = "refresh" in request.query_params

    result = await page_service.get_page(user, force_refresh=refresh)

    if result.redirect_url:
        return RedirectResponse(result.redirect_url, status_code=result.status_code)

    logger.debug(
        f"Serving /user for {user} with {result.status_code}",
        extra={"source": result.source},
    )
    return HTMLResponse(result.html, status_code=result.status_code)
