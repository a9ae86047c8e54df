"""
Application Settings.

All runtime configuration is read from environment variables once, at startup,
and carried through the application as an immutable `Settings` instance. Tests
build `Settings(...)` directly instead of patching the environment.
"""

import os
from dataclasses import dataclass
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the profile page service"""

    port: int = 4008
    environment: str = "development"
    site_domain: str = "at.hn"

    profiles_dir: Path = Path("profiles")
    public_dir: Path = Path("public")

    # Upstream profile API
    upstream_base_url: str = "https://hn.algolia.com/api/v1"
    upstream_timeout: float = 10.0

    # Requester-side deadline for a fetch job
    request_timeout: float = 5.0

    # Dispatcher: no more than 2 job starts in any given second
    queue_concurrency: int = 2
    queue_interval: float = 1.0
    queue_interval_cap: int = 2
    queue_max_backlog: int = 1

    # Cache tiers
    short_term_max_size: int = 100
    short_term_ttl: float = 5.0
    mid_term_max_size: int = 1000
    mid_term_ttl: float = 60 * 60 * 3

    karma_link_follow_min: int = 200

    # Per-IP limit on /user
    ip_rate_limit_requests: int = 50
    ip_rate_limit_window: int = 60

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables"""
        cwd = Path.cwd()
        return cls(
            port=_env_int("PORT", cls.port),
            environment=os.getenv("ENVIRONMENT", cls.environment),
            site_domain=os.getenv("SITE_DOMAIN", cls.site_domain),
            profiles_dir=Path(os.getenv("PROFILES_DIR", str(cwd / "profiles"))),
            public_dir=Path(os.getenv("PUBLIC_DIR", str(cwd / "public"))),
            upstream_base_url=os.getenv("UPSTREAM_BASE_URL", cls.upstream_base_url),
            upstream_timeout=_env_float("UPSTREAM_TIMEOUT", cls.upstream_timeout),
            request_timeout=_env_float("REQUEST_TIMEOUT", cls.request_timeout),
            queue_concurrency=_env_int("QUEUE_CONCURRENCY", cls.queue_concurrency),
            queue_interval=_env_float("QUEUE_INTERVAL", cls.queue_interval),
            queue_interval_cap=_env_int("QUEUE_INTERVAL_CAP", cls.queue_interval_cap),
            queue_max_backlog=_env_int("QUEUE_MAX_BACKLOG", cls.queue_max_backlog),
            short_term_max_size=_env_int("SHORT_TERM_MAX_SIZE", cls.short_term_max_size),
            short_term_ttl=_env_float("SHORT_TERM_TTL", cls.short_term_ttl),
            mid_term_max_size=_env_int("MID_TERM_MAX_SIZE", cls.mid_term_max_size),
            mid_term_ttl=_env_float("MID_TERM_TTL", cls.mid_term_ttl),
            karma_link_follow_min=_env_int(
                "KARMA_LINK_FOLLOW_MIN", cls.karma_link_follow_min
            ),
            ip_rate_limit_requests=_env_int(
                "IP_RATE_LIMIT_REQUESTS", cls.ip_rate_limit_requests
            ),
            ip_rate_limit_window=_env_int(
                "IP_RATE_LIMIT_WINDOW", cls.ip_rate_limit_window
            ),
        )
