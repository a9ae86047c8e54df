"""
Account Name Codec.

Uppercase letters and underscores cannot appear in a subdomain, so account
names are addressed in an encoded form: `Rally_Driver` becomes
`0.rally.1.0.driver`. An uppercase letter is written as `0.` plus its lowercase
form and an underscore as `.1.`; everything else passes through.

The encoded form is the externally addressable identity and the cache key, so
`Rally_Driver` and `0.rally.1.0.driver` share one cache slot.

A name that already contains the literal text `0.` or `.1.` cannot be told
apart from an escape sequence. Round trips are only guaranteed for names over
letters, digits and underscores, which never contain those substrings.
"""

import re
from dataclasses import dataclass
from typing import Optional

from core.exceptions import BadInputError

MAX_NAME_LENGTH = 255

_ESCAPE_RE = re.compile(r"\.1\.|0\.([a-z])")
_WORD_RE = re.compile(r"\w")
_ALLOWED_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


def encode(decoded: str) -> str:
    """Encode a decoded account name into its DNS-label-safe form"""
    parts = []
    for char in decoded:
        if "A" <= char <= "Z":
            parts.append("0." + char.lower())
        elif char == "_":
            parts.append(".1.")
        else:
            parts.append(char)
    return "".join(parts)


def decode(encoded: str) -> str:
    """Decode an encoded account name back to its original form"""

    def _unescape(match: re.Match) -> str:
        letter = match.group(1)
        return letter.upper() if letter else "_"

    # "0." only escapes a lowercase letter, so "0_" (encoded "0.1.") survives
    return _ESCAPE_RE.sub(_unescape, encoded)


def validate_account_name(raw: Optional[str]) -> str:
    """Validate a raw account name parameter, raising BadInputError"""
    if not raw:
        raise BadInputError(raw, "user param missing")
    if len(raw) >= MAX_NAME_LENGTH:
        raise BadInputError(raw, f"must be under {MAX_NAME_LENGTH} characters")
    if not _WORD_RE.search(raw):
        raise BadInputError(raw, "must contain a word character")
    if not _ALLOWED_RE.match(raw):
        raise BadInputError(
            raw, "may only contain letters, digits, underscores, dots and hyphens"
        )
    return raw


@dataclass(frozen=True)
class AccountName:
    """The three views of an account name supplied by a caller"""

    raw: str
    decoded: str
    encoded: str

    @property
    def key(self) -> str:
        """Canonical cache and storage key"""
        return self.encoded

    @property
    def needs_encoding(self) -> bool:
        return self.decoded != self.encoded

    @classmethod
    def parse(cls, raw: Optional[str]) -> "AccountName":
        raw = validate_account_name(raw)
        decoded = decode(raw)
        return cls(raw=raw, decoded=decoded, encoded=encode(decoded))
