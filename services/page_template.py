"""
Page and error fragment rendering with Jinja2.

Rendering is pure templating: every value that reaches a template is either
escaped by Jinja2 autoescaping or, for the bio, already sanitized by the
content pipeline.
"""

from pathlib import Path
from typing import Optional
from urllib.parse import quote

from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.exceptions import (
    BadInputError,
    NotOptedInError,
    OverloadedError,
    ProfileNotFoundError,
    ProfilePageException,
    RateLimitExceededError,
)
from core.models import ProfileRecord
from core.name_codec import AccountName

TEMPLATES_DIR = Path(__file__).parent / "templates"

DEFAULT_SITE_DOMAIN = "at.hn"
DEFAULT_UPSTREAM_BASE_URL = "https://hn.algolia.com/api/v1"

_environment = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


def render_profile_page(
    account: AccountName,
    profile: ProfileRecord,
    bio_html: str,
    site_domain: str = DEFAULT_SITE_DOMAIN,
) -> str:
    return _environment.get_template("profile.html").render(
        account=account,
        profile=profile,
        bio_html=bio_html,
        site_domain=site_domain,
    )


def error_kind(exc: Optional[ProfilePageException]) -> str:
    """Which guidance an error fragment should show"""
    if isinstance(exc, BadInputError):
        return "bad_input"
    if isinstance(exc, OverloadedError):
        return "overloaded"
    if isinstance(exc, RateLimitExceededError):
        return "rate_limited"
    if isinstance(exc, (NotOptedInError, ProfileNotFoundError)):
        return "not_found"
    return "error"


def render_error_fragment(
    exc: Optional[ProfilePageException] = None,
    kind: Optional[str] = None,
    site_domain: str = DEFAULT_SITE_DOMAIN,
    upstream_base_url: str = DEFAULT_UPSTREAM_BASE_URL,
) -> str:
    """
    Render the HTML fragment explaining a failed or deferred request.

    Pass either the exception that ended the request or an explicit `kind`
    (`"queued"` for a fetch that outlived the request deadline).
    """
    details = exc.details if exc is not None else {}
    decoded = details.get("decoded", "")
    encoded = details.get("encoded", decoded)
    return _environment.get_template("error.html").render(
        kind=kind or error_kind(exc),
        reason=details.get("reason"),
        error_code=exc.error_code if exc is not None else None,
        decoded=decoded,
        encoded=encoded,
        upstream_url=f"{upstream_base_url.rstrip('/')}/users/{quote(decoded, safe='')}",
        site_domain=site_domain,
    )
