"""Bearer token helpers: sanitizing, classifying and masking tokens."""

from __future__ import annotations

import re
from typing import Final

BEARER_PREFIX: Final[str] = "Bearer "
API_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-zA-Z0-9]{32}$")
OAUTH_TOKEN_PARTS: Final[int] = 3


def sanitize_token(token: str | None) -> str:
    """Strip whitespace and a leading `Bearer ` prefix. Empty input gives ''."""
    if not token or not token.strip():
        return ""
    trimmed = token.strip()
    if trimmed.startswith(BEARER_PREFIX):
        return trimmed[len(BEARER_PREFIX) :]
    return trimmed


def extract_token_value(token: str) -> str:
    if token.startswith(BEARER_PREFIX):
        return token[len(BEARER_PREFIX) :].strip()
    return token.strip()


def is_oauth_token(token: str) -> bool:
    """Tokens issued through the delegated grant have three colon-separated parts."""
    return len(extract_token_value(token).split(":")) == OAUTH_TOKEN_PARTS


def is_api_token(token: str) -> bool:
    """Globalping API tokens are 32 alphanumeric characters."""
    value = extract_token_value(token)
    if is_oauth_token(value):
        return False
    return API_TOKEN_PATTERN.match(value) is not None


def parse_authorization_header(header: str | None) -> str | None:
    """Return the token from a `Bearer` Authorization header, or None."""
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def mask_token(token: str) -> str:
    """Return a short, non-reversible rendering of a token for logs."""
    value = extract_token_value(token)
    if len(value) < 15:
        return "***"
    return f"{value[7:15]}..."
