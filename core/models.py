"""
Core data models for the profile page service

Defines ProfileRecord for upstream profiles, FetchOutcome for the result of a
fetch job and PageResult for what a request ends up serving.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, field_validator


class ProfileRecord(BaseModel):
    """
    Public profile returned by the upstream user API.
    Immutable once fetched; a refetch produces a new record.
    """

    model_config = ConfigDict(frozen=True)

    username: str
    created_at: datetime
    karma: int = 0
    about: str = ""

    @field_validator("karma", mode="before")
    @classmethod
    def _karma_default(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("about", mode="before")
    @classmethod
    def _about_default(cls, value: Any) -> Any:
        return "" if value is None else value

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "ProfileRecord":
        return cls(
            username=payload["username"],
            created_at=payload["created_at"],
            karma=payload.get("karma"),
            about=payload.get("about"),
        )


class FetchStatus(str, Enum):
    RENDERED = "rendered"
    NOT_OPTED_IN = "not_opted_in"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(frozen=True)
class FetchOutcome:
    """Result of a completed fetch job"""

    status: FetchStatus
    html: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class PageResult:
    """What a /user request serves"""

    status_code: int
    html: str = ""
    redirect_url: Optional[str] = None
    source: str = "fetch"  # cache tier, fetch or queued
