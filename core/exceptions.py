"""
Custom Exception Classes for the profile page service.

Every failure a request can end in is one of the exceptions below. Each carries
a message, a stable `error_code` and a `details` dictionary; the error handling
middleware turns them into an HTML error fragment with the matching status code.

Key Components:
- `ProfilePageException`: The base class. Catch it to handle every expected
  failure in one place.
- `BadInputError`: The account name parameter is missing or malformed.
- `OverloadedError`: The fetch dispatcher refused new work (backpressure toward
  the upstream API).
- `NotOptedInError`: The upstream profile exists but its bio does not carry the
  opt-in marker.
- `ProfileNotFoundError`: The upstream API has no such account.
- `UpstreamFailureError`: The upstream API could not be reached, answered with a
  non-success status, or the bio could not be rendered.
- `StorageFailureError`: The persistent cache tier failed with anything other
  than "file not found".
- `RateLimitExceededError`: A single client IP sent too many requests.
- `to_status_code`: Maps an exception to its HTTP status code.

A timed-out fetch is deliberately absent: it is not an error, the job keeps
running and the requester gets a 202.
"""

from typing import Optional, Dict, Any


class ProfilePageException(Exception):
    """Base exception class for the profile page service"""

    def __init__(
        self,
        message: str,
        error_code: str = "PROFILE_PAGE_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return to_status_code(self)


class BadInputError(ProfilePageException):
    """Raised when the account name parameter is missing or invalid"""

    def __init__(self, value: Optional[str], reason: str):
        super().__init__(
            f"Invalid account name: {reason}",
            "BAD_INPUT",
            {"value": value, "reason": reason},
        )


class OverloadedError(ProfilePageException):
    """Raised when the dispatcher backlog is above its admission threshold"""

    def __init__(self, backlog: int, max_backlog: int):
        super().__init__(
            f"Fetch queue is too large ({backlog} waiting, limit {max_backlog})",
            "OVERLOADED",
            {"backlog": backlog, "max_backlog": max_backlog},
        )


class NotOptedInError(ProfilePageException):
    """Raised when a fetched bio lacks the opt-in marker"""

    def __init__(self, decoded: str, encoded: str):
        super().__init__(
            f"User {decoded} has not opted in",
            "NOT_OPTED_IN",
            {"decoded": decoded, "encoded": encoded},
        )


class ProfileNotFoundError(ProfilePageException):
    """Raised when the upstream API has no profile for the account"""

    def __init__(self, decoded: str, encoded: Optional[str] = None):
        super().__init__(
            f"Profile not found for username: {decoded}",
            "PROFILE_NOT_FOUND",
            {"decoded": decoded, "encoded": encoded or decoded},
        )


class UpstreamFailureError(ProfilePageException):
    """Raised when the upstream profile API fails or rendering blows up"""

    def __init__(self, username: str, reason: str):
        super().__init__(
            f"Failed to fetch profile for {username}: {reason}",
            "UPSTREAM_FAILURE",
            {"username": username, "reason": reason},
        )


class StorageFailureError(ProfilePageException):
    """Raised when the persistent cache tier fails for a reason other than a missing file"""

    def __init__(self, operation: str, path: str, reason: str):
        super().__init__(
            f"Storage operation '{operation}' failed for {path}: {reason}",
            "STORAGE_FAILURE",
            {"operation": operation, "path": path, "reason": reason},
        )


class RateLimitExceededError(ProfilePageException):
    """Raised when a client exceeds the per-IP request limit"""

    def __init__(self, identifier: str, limit: int, window: int):
        super().__init__(
            f"Rate limit exceeded for {identifier}: {limit} requests per {window}s",
            "RATE_LIMIT_EXCEEDED",
            {"identifier": identifier, "limit": limit, "window": window},
        )


STATUS_CODE_MAP = {
    "BAD_INPUT": 400,
    "NOT_OPTED_IN": 404,
    "PROFILE_NOT_FOUND": 404,
    "OVERLOADED": 429,
    "RATE_LIMIT_EXCEEDED": 429,
    "UPSTREAM_FAILURE": 500,
    "STORAGE_FAILURE": 500,
}


def to_status_code(exc: ProfilePageException) -> int:
    """Map a ProfilePageException to its HTTP status code"""
    return STATUS_CODE_MAP.get(exc.error_code, 500)
