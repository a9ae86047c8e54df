import dataclasses
import time
from contextlib import ExitStack

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from core.exceptions import UpstreamFailureError
from main import create_app


@pytest.fixture
def client_factory(settings, fake_provider):
    """Build a running app with overridden settings and/or provider."""
    with ExitStack() as stack:

        def _make(provider=None, **overrides):
            app = create_app(
                settings=dataclasses.replace(settings, **overrides),
                provider=provider or fake_provider,
            )
            return stack.enter_context(TestClient(app))

        yield _make


class TestHealthEndpoints:
    """Test health check endpoints."""

    def test_health_endpoint(self, test_client):
        """Test the health check endpoint."""
        response = test_client.get("/healthcheck")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert "version" in data

    def test_ping_endpoint(self, test_client):
        """Test the ping endpoint."""
        response = test_client.get("/monitoring/ping")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["message"] == "pong"

    def test_cache_stats_endpoint(self, test_client):
        """Test the cache stats endpoint."""
        test_client.get("/user", params={"user": "alice"})
        test_client.get("/user", params={"user": "alice"})

        response = test_client.get("/monitoring/cache/stats")

        assert response.status_code == status.HTTP_200_OK
        stats = response.json()["cache_stats"]
        assert set(stats) == {"short_term", "mid_term", "persistent"}
        assert stats["short_term"]["hits"] == 1
        assert stats["short_term"]["entries"] == 1

    def test_dispatcher_endpoint(self, test_client):
        test_client.get("/user", params={"user": "alice"})

        response = test_client.get("/monitoring/dispatcher")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()["dispatcher"]
        assert data["admitted"] == 1
        assert data["completed"] == 1
        assert data["concurrency"] == 2
        assert data["max_backlog"] == 1


class TestUserPage:
    """Test the profile page endpoint."""

    def test_opted_in_profile(self, test_client, fake_provider):
        response = test_client.get("/user", params={"user": "alice"})

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"].startswith("text/html")
        assert "<em>Markdown</em>" in response.text
        assert "Hi, I build things." in response.text
        assert fake_provider.calls == ["alice"]

    def test_repeat_request_uses_cache(self, test_client, fake_provider):
        first = test_client.get("/user", params={"user": "alice"})
        second = test_client.get("/user", params={"user": "alice"})

        assert first.text == second.text
        assert fake_provider.calls == ["alice"]

    def test_trailing_slash(self, test_client):
        response = test_client.get("/user/", params={"user": "alice"})
        assert response.status_code == status.HTTP_200_OK

    def test_encoded_name(self, test_client, fake_provider):
        response = test_client.get("/user", params={"user": "0.rally.1.0.driver"})

        assert response.status_code == status.HTTP_200_OK
        assert "Rally_Driver" in response.text
        assert fake_provider.calls == ["Rally_Driver"]

    def test_missing_user_param(self, test_client):
        response = test_client.get("/user")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "Bad Request" in response.text

    def test_invalid_user_param(self, test_client, fake_provider):
        response = test_client.get("/user", params={"user": "<script>"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "<script>" not in response.text
        assert fake_provider.calls == []

    def test_not_opted_in(self, test_client):
        response = test_client.get("/user", params={"user": "bob"})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert "Ensure that your bio text includes" in response.text
        assert "bob.at.hn" in response.text

    def test_not_opted_in_shows_encoded_address(
        self, client_factory, provider_factory, profile_factory
    ):
        provider = provider_factory({"Quiet_One": profile_factory("Quiet_One", "hello")})
        client = client_factory(provider=provider)

        response = client.get("/user", params={"user": "Quiet_One"})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert "0.quiet.1.0.one.at.hn" in response.text

    def test_unknown_user(self, test_client):
        response = test_client.get("/user", params={"user": "ghost"})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert "ghost" in response.text

    def test_upstream_failure(self, client_factory, provider_factory):
        provider = provider_factory(error=UpstreamFailureError("alice", "HTTP 502"))
        client = client_factory(provider=provider)

        response = client.get("/user", params={"user": "alice"})

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert "Internal Server Error" in response.text

    def test_overloaded(self, test_client, fake_provider):
        test_client.app.state.dispatcher.waiting = 5

        response = test_client.get("/user", params={"user": "alice"})

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert "being hammered" in response.text
        assert fake_provider.calls == []

    def test_slow_fetch_is_queued_then_served(
        self, client_factory, provider_factory, profile_factory
    ):
        provider = provider_factory(
            {"alice": profile_factory("alice", "alice.at.hn<p>eventually")}, delay=0.3
        )
        client = client_factory(provider=provider, request_timeout=0.05)

        queued = client.get("/user", params={"user": "alice"})
        assert queued.status_code == status.HTTP_202_ACCEPTED
        assert "queued" in queued.text

        time.sleep(0.6)
        served = client.get("/user", params={"user": "alice"})
        assert served.status_code == status.HTTP_200_OK
        assert "eventually" in served.text
        assert provider.calls == ["alice"]


class TestRefresh:
    """Test forced refreshes."""

    def test_refresh_redirects_to_subdomain(self, test_client):
        response = test_client.get(
            "/user?user=Rally_Driver&refresh", follow_redirects=False
        )

        assert response.status_code == status.HTTP_303_SEE_OTHER
        assert response.headers["location"] == "https://0.rally.1.0.driver.at.hn"

    def test_refresh_with_value(self, test_client):
        response = test_client.get(
            "/user", params={"user": "alice", "refresh": "1"}, follow_redirects=False
        )

        assert response.status_code == status.HTTP_303_SEE_OTHER

    def test_refresh_in_development_redirects_locally(self, client_factory):
        client = client_factory(environment="development", port=4008)

        response = client.get("/user?user=alice&refresh", follow_redirects=False)

        assert response.status_code == status.HTTP_303_SEE_OTHER
        assert response.headers["location"] == "http://localhost:4008/user/?user=alice"

    def test_refresh_refetches_after_mid_term_hit(self, test_client, fake_provider):
        test_client.get("/user", params={"user": "alice"})
        test_client.app.state.cache.short_term.cache.clear()

        response = test_client.get("/user?user=alice&refresh", follow_redirects=False)

        assert response.status_code == status.HTTP_303_SEE_OTHER
        assert fake_provider.calls == ["alice", "alice"]


class TestRateLimiting:
    """Test per-IP rate limiting of /user."""

    def test_per_ip_limit(self, client_factory):
        client = client_factory(ip_rate_limit_requests=3)

        for _ in range(3):
            assert client.get("/user", params={"user": "alice"}).status_code == 200

        response = client.get("/user", params={"user": "alice"})
        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert "Retry-After" in response.headers

        # Health checks are not limited
        assert client.get("/healthcheck").status_code == 200


class TestHeaders:
    """Test headers added by the middleware stack."""

    def test_security_headers_on_error_responses(self, test_client):
        response = test_client.get("/user")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_correlation_id(self, test_client):
        response = test_client.get(
            "/user", params={"user": "alice"}, headers={"X-Correlation-ID": "abc-123"}
        )

        assert response.headers["X-Correlation-ID"] == "abc-123"
        assert "X-Process-Time" in response.headers


class TestStaticFiles:
    """Test the public directory mount."""

    def test_index_served(self, settings, fake_provider):
        settings.public_dir.mkdir(parents=True)
        (settings.public_dir / "index.html").write_text("<h1>at.hn</h1>")

        with TestClient(create_app(settings=settings, provider=fake_provider)) as client:
            response = client.get("/")
            assert response.status_code == status.HTTP_200_OK
            assert "<h1>at.hn</h1>" in response.text

            # API routes are not shadowed
            assert client.get("/healthcheck").status_code == status.HTTP_200_OK

    def test_no_public_dir(self, test_client):
        assert test_client.get("/").status_code == status.HTTP_404_NOT_FOUND
