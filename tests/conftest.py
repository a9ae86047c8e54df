import asyncio
import os
import sys
from typing import Dict, Generator, Optional

import pytest
from fastapi.testclient import TestClient

# Add the parent directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import Settings
from core.models import ProfileRecord
from main import create_app
from providers.profile_provider import ProfileProvider


class FakeProfileProvider(ProfileProvider):
    """In-memory provider; records every username it is asked for"""

    def __init__(
        self,
        profiles: Optional[Dict[str, ProfileRecord]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.profiles = dict(profiles or {})
        self.delay = delay
        self.error = error
        self.calls = []

    @property
    def source_name(self) -> str:
        return "fake"

    async def fetch_profile(self, username: str) -> Optional[ProfileRecord]:
        self.calls.append(username)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.profiles.get(username)


def build_profile(
    username: str,
    about: str = "",
    karma: int = 100,
    created_at: str = "2015-03-01T12:00:00.000Z",
) -> ProfileRecord:
    return ProfileRecord.from_api(
        {
            "username": username,
            "about": about,
            "karma": karma,
            "created_at": created_at,
        }
    )


@pytest.fixture
def profile_factory():
    """Build ProfileRecords the way the upstream API would return them."""
    return build_profile


@pytest.fixture
def fake_provider() -> FakeProfileProvider:
    """A provider serving an opted-in `alice` and an opted-out `bob`."""
    return FakeProfileProvider(
        {
            "alice": build_profile(
                "alice", "Hi, I build things.<p>alice.at.hn<p>I like *Markdown*"
            ),
            "bob": build_profile("bob", "Just bob, nothing to see here"),
            "Rally_Driver": build_profile(
                "Rally_Driver", "Vroom <p>0.rally.1.0.driver.at.hn", karma=500
            ),
        }
    )


@pytest.fixture
def provider_factory():
    return FakeProfileProvider


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Production-mode settings with all state under a temporary directory."""
    return Settings(
        environment="production",
        profiles_dir=tmp_path / "profiles",
        public_dir=tmp_path / "public",
        request_timeout=2.0,
    )


@pytest.fixture
def app(settings, fake_provider):
    return create_app(settings=settings, provider=fake_provider)


@pytest.fixture
def test_client(app) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app."""
    with TestClient(app) as client:
        yield client


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.delenv("LOG_FILE", raising=False)
