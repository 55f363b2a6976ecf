"""Origin and Host header validation against DNS rebinding.

Requests to the transport and token endpoints must carry a `Host` header whose
hostname is derived from the allowed origins, and, when an `Origin` header is
present, an origin that is explicitly allow-listed. Loopback origins are the
only ones accepted on any port.
"""

from __future__ import annotations

from collections.abc import Iterable
from urllib.parse import urlsplit

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from globalping_mcp.exceptions import (
    GatewayError,
    HostRejectedError,
    OriginRejectedError,
)
from globalping_mcp.utilities.logging import get_logger

logger = get_logger(__name__)

LOOPBACK_HOSTNAMES = frozenset({"localhost", "127.0.0.1", "[::1]"})

CORS_METHODS = "GET, POST, DELETE, OPTIONS"
CORS_HEADERS = "Content-Type, Authorization, Mcp-Session-Id"
CORS_EXPOSE_HEADERS = "Mcp-Session-Id"
CORS_MAX_AGE = 86400


def normalize_path_prefixes(prefixes: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(p.rstrip("/") or "/" for p in prefixes))


def matches_path_prefix(path: str, prefixes: Iterable[str]) -> bool:
    """True if `path` is one of `prefixes` or lies below one of them."""
    return any(path == prefix or path.startswith(f"{prefix}/") for prefix in prefixes)


def _hostname(value: str) -> str | None:
    """Lowercased hostname of a URL, with IPv6 addresses in brackets."""
    hostname = urlsplit(value).hostname
    if not hostname:
        return None
    return f"[{hostname}]" if ":" in hostname else hostname


class OriginValidator:
    """Validates `Origin` and `Host` headers against an explicit allow-list."""

    def __init__(self, allowed_origins: Iterable[str]):
        self.allowed_origins: list[str] = list(allowed_origins)
        self.allowed_hostnames: frozenset[str] = self._derive_hostnames(
            self.allowed_origins
        )

    @staticmethod
    def _derive_hostnames(origins: Iterable[str]) -> frozenset[str]:
        hostnames: set[str] = set()
        for origin in origins:
            if "://" in origin:
                # custom schemes such as vscode:// have no hostname
                hostname = _hostname(origin)
                if hostname:
                    hostnames.add(hostname)
            elif origin:
                hostnames.add(origin.lower())
        return frozenset(hostnames)

    def _loopback_base_origin(self, origin: str) -> str | None:
        try:
            parsed = urlsplit(origin)
            # raises ValueError for a non-numeric port
            parsed.port
        except ValueError:
            return None
        if parsed.username is not None or parsed.password is not None:
            return None
        hostname = _hostname(origin)
        if hostname not in LOOPBACK_HOSTNAMES:
            return None
        return f"{parsed.scheme.lower()}://{hostname}"

    def validate_origin(self, origin: str | None) -> bool:
        """True iff the origin is allow-listed, or is a loopback origin whose
        port-less form is allow-listed."""
        if not origin:
            return False
        if origin in self.allowed_origins:
            return True
        base_origin = self._loopback_base_origin(origin)
        return base_origin is not None and base_origin in self.allowed_origins

    def get_matching_origin(self, origin: str | None) -> str | None:
        """Return the allow-listed origin that admits `origin`, or None."""
        if not origin or not self.validate_origin(origin):
            return None
        if origin in self.allowed_origins:
            return origin
        return self._loopback_base_origin(origin)

    def validate_host(self, host: str | None) -> bool:
        """True iff the Host header's hostname, port removed, is allowed."""
        if not host:
            return False

        if host.startswith("["):
            close_bracket = host.find("]")
            if close_bracket == -1:
                return False
            hostname = host[: close_bracket + 1]
        else:
            hostname, sep, _ = host.rpartition(":")
            if not sep:
                hostname = host

        return hostname.lower() in self.allowed_hostnames

    def cors_headers(self, origin: str | None) -> dict[str, str]:
        """CORS response headers for a request with the given Origin header.

        `Access-Control-Allow-Origin` is `*` only when no Origin was sent, and
        is omitted for an origin that is not allowed.
        """
        headers = {
            "Access-Control-Allow-Methods": CORS_METHODS,
            "Access-Control-Allow-Headers": CORS_HEADERS,
            "Access-Control-Expose-Headers": CORS_EXPOSE_HEADERS,
            "Access-Control-Max-Age": str(CORS_MAX_AGE),
        }
        if origin is None:
            headers["Access-Control-Allow-Origin"] = "*"
        else:
            matching = self.get_matching_origin(origin)
            if matching is not None:
                headers["Access-Control-Allow-Origin"] = matching
                headers["Vary"] = "Origin"
        return headers

    def check(self, origin: str | None, host: str | None) -> None:
        """Raise if a request with these headers must be refused.

        A missing Origin header is accepted; non-browser clients do not send
        one. The Host header is always required.

        Raises:
            OriginRejectedError: Origin present and not allowed.
            HostRejectedError: Host missing or not allowed.
        """
        if origin is not None and not self.validate_origin(origin):
            raise OriginRejectedError(f"Origin not allowed: {origin}")
        if not self.validate_host(host):
            raise HostRejectedError(f"Host not allowed: {host}")


class OriginValidationMiddleware(BaseHTTPMiddleware):
    """Enforces Origin/Host validation and CORS on protected path prefixes.

    Rejected requests get a 403 before any route handler runs. Preflight
    requests are answered here.
    """

    def __init__(
        self,
        app: ASGIApp,
        validator: OriginValidator,
        protected_paths: Iterable[str],
    ):
        super().__init__(app)
        self.validator = validator
        self.protected_paths = normalize_path_prefixes(protected_paths)

    def is_protected(self, path: str) -> bool:
        return matches_path_prefix(path, self.protected_paths)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not self.is_protected(request.url.path):
            return await call_next(request)

        origin = request.headers.get("origin")
        try:
            self.validator.check(origin, request.headers.get("host"))
        except GatewayError as e:
            logger.warning(
                "Refused %s %s: %s",
                request.method,
                request.url.path,
                e.error_description,
            )
            return JSONResponse(
                {"error": e.error, "error_description": e.user_message},
                status_code=e.status_code,
            )

        cors_headers = self.validator.cors_headers(origin)
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=cors_headers)

        response = await call_next(request)
        response.headers.update(cors_headers)
        return response
