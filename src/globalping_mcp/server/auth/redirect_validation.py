"""Redirect URI validation for downstream clients."""

from __future__ import annotations

import fnmatch
from urllib.parse import urlsplit

from pydantic import AnyUrl

DEFAULT_LOCALHOST_PATTERNS = [
    "http://localhost:*",
    "http://127.0.0.1:*",
]


def _split_netloc(netloc: str) -> tuple[str, str]:
    """Split a netloc into (host, port) without validating the port.

    Bracketed IPv6 hosts keep their brackets.
    """
    if netloc.startswith("["):
        end = netloc.find("]")
        if end == -1:
            return netloc, ""
        host, rest = netloc[: end + 1], netloc[end + 1 :]
        return host, rest[1:] if rest.startswith(":") else ""
    host, sep, port = netloc.rpartition(":")
    if not sep:
        return netloc, ""
    return host, port


def matches_allowed_pattern(uri: str, pattern: str) -> bool:
    """Check if a URI matches an allowed pattern with wildcard support.

    Scheme, host, port and path are compared separately, so a wildcard can
    never stretch across components. A pattern without a path accepts any
    path. URIs carrying user info are never matched.

    Args:
        uri: The redirect URI to check
        pattern: The pattern, e.g. "http://localhost:*" or "https://*.example.com/*"

    Returns:
        True if the URI matches the pattern
    """
    parsed_uri = urlsplit(uri)
    parsed_pattern = urlsplit(pattern)

    if parsed_uri.scheme.lower() != parsed_pattern.scheme.lower():
        return False
    if "@" in parsed_uri.netloc:
        return False

    uri_host, uri_port = _split_netloc(parsed_uri.netloc)
    pattern_host, pattern_port = _split_netloc(parsed_pattern.netloc)

    if not uri_host or not fnmatch.fnmatchcase(
        uri_host.lower(), pattern_host.lower()
    ):
        return False
    if not fnmatch.fnmatchcase(uri_port, pattern_port):
        return False
    if parsed_pattern.path and not fnmatch.fnmatchcase(
        parsed_uri.path, parsed_pattern.path
    ):
        return False
    return True


def validate_redirect_uri(
    redirect_uri: str | AnyUrl | None,
    allowed_patterns: list[str] | None,
) -> bool:
    """Validate a redirect URI against allowed patterns.

    Args:
        redirect_uri: The redirect URI to validate. A missing URI is refused.
        allowed_patterns: List of allowed patterns. If None, the loopback
            defaults apply. An empty list allows nothing.

    Returns:
        True if the redirect URI is allowed
    """
    if not redirect_uri:
        return False

    uri_str = str(redirect_uri)

    if allowed_patterns is None:
        allowed_patterns = DEFAULT_LOCALHOST_PATTERNS

    return any(
        matches_allowed_pattern(uri_str, pattern) for pattern in allowed_patterns
    )
