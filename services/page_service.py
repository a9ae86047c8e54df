"""
Profile Page Service

Serves one `/user` request: resolves the account name, consults the cache
hierarchy and, on a miss, races a dispatcher fetch job against the request
deadline.

The fetch job owns its own completion. Whether or not the request that started
it is still waiting, a rendered page is written through every cache tier and an
opted-out or missing account is purged from every tier.
"""

import asyncio
from typing import Optional
from urllib.parse import quote

from core.cache import CacheHierarchy
from core.config import Settings
from core.dispatcher import Dispatcher
from core.exceptions import (
    NotOptedInError,
    ProfileNotFoundError,
    StorageFailureError,
    UpstreamFailureError,
)
from core.logging_config import get_logger
from core.models import FetchOutcome, FetchStatus, PageResult
from core.name_codec import AccountName
from providers.profile_provider import ProfileProvider
from services.content_pipeline import ContentPipeline
from services.page_template import render_error_fragment, render_profile_page

logger = get_logger(__name__)


class ProfilePageService:
    """Cache lookup, fetch admission and timeout race for profile pages"""

    def __init__(
        self,
        cache: CacheHierarchy,
        dispatcher: Dispatcher,
        provider: ProfileProvider,
        pipeline: ContentPipeline,
        settings: Optional[Settings] = None,
    ):
        self.cache = cache
        self.dispatcher = dispatcher
        self.provider = provider
        self.pipeline = pipeline
        self.settings = settings or Settings()

    async def get_page(
        self, raw: Optional[str], force_refresh: bool = False
    ) -> PageResult:
        """
        Produce the response for a `/user` request.

        Returns a 200 (cached or freshly rendered), 202 (job still running after
        the deadline) or 303 (forced refresh finished in time). Every other
        ending is raised as a ProfilePageException.
        """
        account = AccountName.parse(raw)
        logger.info(
            f"Received request for user: {raw}, refresh: {force_refresh}",
            extra={"queue_waiting": self.dispatcher.waiting},
        )

        hit = await self.cache.lookup(account.key, allow_stale=not force_refresh)
        if hit is not None:
            return PageResult(200, hit.html, source=hit.tier.value)

        future = self.dispatcher.submit(
            account.key, lambda: self._fetch_and_render(account)
        )

        try:
            outcome = await asyncio.wait_for(
                asyncio.shield(future), timeout=self.settings.request_timeout
            )
        except asyncio.TimeoutError:
            logger.info(f"Request timed out and queued for user: {raw}")
            return PageResult(
                202,
                render_error_fragment(
                    kind="queued", site_domain=self.settings.site_domain
                ),
                source="queued",
            )

        return self._to_result(account, outcome, force_refresh)

    def _to_result(
        self, account: AccountName, outcome: FetchOutcome, force_refresh: bool
    ) -> PageResult:
        if outcome.status == FetchStatus.RENDERED:
            if force_refresh:
                redirect_url = self.canonical_url(account)
                logger.info(f"Refreshed - redirecting {redirect_url}")
                return PageResult(303, redirect_url=redirect_url)
            return PageResult(200, outcome.html)

        if outcome.status == FetchStatus.NOT_OPTED_IN:
            raise NotOptedInError(account.decoded, account.encoded)
        if outcome.status == FetchStatus.NOT_FOUND:
            raise ProfileNotFoundError(account.decoded, account.encoded)
        raise UpstreamFailureError(account.decoded, outcome.reason or "fetch failed")

    def canonical_url(self, account: AccountName) -> str:
        if self.settings.is_development:
            port = self.settings.port
            return f"http://localhost:{port}/user/?user={quote(account.raw)}"
        return f"https://{account.encoded}.{self.settings.site_domain}"

    async def _fetch_and_render(self, account: AccountName) -> FetchOutcome:
        """Fetch job body: fetch, check opt-in, render, then write through or purge"""
        logger.info(
            f"Fetching profile for user: {account.raw}, Decoded: {account.decoded}"
        )
        try:
            profile = await self.provider.fetch_profile(account.decoded)
        except UpstreamFailureError as e:
            reason = e.details.get("reason", e.message)
            return FetchOutcome(FetchStatus.FAILED, reason=reason)

        if profile is None:
            logger.info(f"No upstream profile for user: {account.decoded}")
            await self.cache.invalidate(account.key)
            return FetchOutcome(FetchStatus.NOT_FOUND)

        if not self.pipeline.has_opted_in(profile.about, account):
            logger.info(f"User bio not opted in for user: {account.decoded}")
            # The user may have removed the marker since the page was cached
            await self.cache.invalidate(account.key)
            return FetchOutcome(FetchStatus.NOT_OPTED_IN)

        try:
            bio_html = self.pipeline.render(profile.about, account, profile.karma)
            page = render_profile_page(
                account, profile, bio_html, site_domain=self.settings.site_domain
            )
        except Exception as e:
            logger.error(
                f"Error rendering profile for user: {account.decoded}: {e}",
                exc_info=True,
            )
            return FetchOutcome(FetchStatus.FAILED, reason=f"render failed: {e}")

        try:
            await self.cache.put(account.key, page)
        except StorageFailureError as e:
            # Memory tiers were written before the file; the page is still served
            logger.error(f"Failed to persist profile for user: {account.decoded}: {e}")

        logger.info(f"Profile fetched and cached for user: {account.decoded}")
        return FetchOutcome(FetchStatus.RENDERED, html=page)
