"""
Profile Provider Classes

Fetches public Hacker News profiles. The provider interface is kept small so the
page service can be exercised against an in-memory fake.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import quote

import aiohttp
from pydantic import ValidationError

from core.exceptions import UpstreamFailureError
from core.logging_config import get_logger
from core.models import ProfileRecord

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://hn.algolia.com/api/v1"


class ProfileProvider(ABC):
    """Abstract base class for profile providers"""

    @abstractmethod
    async def fetch_profile(self, username: str) -> Optional[ProfileRecord]:
        """
        Fetch the profile for a decoded username.

        Returns None when the account does not exist and raises
        UpstreamFailureError for any other failure.
        """
        pass

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Source identifier for this provider"""
        pass


class HackerNewsProfileProvider(ProfileProvider):
    """Fetch profiles from the HN Algolia users endpoint"""

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def source_name(self) -> str:
        return "hn_algolia"

    def profile_url(self, username: str) -> str:
        return f"{self.base_url}/users/{quote(username, safe='')}"

    async def fetch_profile(self, username: str) -> Optional[ProfileRecord]:
        url = self.profile_url(username)
        logger.info(f"Fetching profile {url}")

        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    if response.status == 404:
                        logger.info(f"No upstream profile for {username}")
                        return None
                    if response.status != 200:
                        raise UpstreamFailureError(
                            username, f"HTTP {response.status} from {url}"
                        )
                    payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error fetching profile for {username}: {e}")
            raise UpstreamFailureError(username, str(e) or type(e).__name__)
        except ValueError as e:
            logger.error(f"Invalid JSON in profile for {username}: {e}")
            raise UpstreamFailureError(username, "invalid JSON payload")

        if not isinstance(payload, dict) or not payload.get("username"):
            logger.info(f"Upstream payload for {username} has no username")
            return None

        try:
            return ProfileRecord.from_api(payload)
        except (KeyError, ValidationError) as e:
            logger.error(f"Malformed profile payload for {username}: {e}")
            raise UpstreamFailureError(username, "malformed profile payload")
