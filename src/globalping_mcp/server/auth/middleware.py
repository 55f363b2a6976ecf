"""Upstream token resolution for the MCP transport endpoints."""

from __future__ import annotations

from collections.abc import Iterable

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from globalping_mcp.exceptions import (
    GatewayError,
    InvalidTokenError,
    UpstreamRefreshError,
)
from globalping_mcp.server.auth.gateway import ENV_TOKEN_HEADER, AuthorizationGateway
from globalping_mcp.server.security import matches_path_prefix, normalize_path_prefixes
from globalping_mcp.utilities.logging import get_logger

logger = get_logger(__name__)


class UpstreamTokenMiddleware(BaseHTTPMiddleware):
    """Resolves the Globalping token for requests to the transport paths.

    The resolved token is placed on `request.state.upstream_token`, None for
    requests that present no credentials. A presented bearer that cannot be
    resolved, or whose refresh fails after expiry, gets a 401.
    """

    def __init__(
        self,
        app: ASGIApp,
        gateway: AuthorizationGateway,
        transport_paths: Iterable[str],
    ):
        super().__init__(app)
        self.gateway = gateway
        self.transport_paths = normalize_path_prefixes(transport_paths)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.method == "OPTIONS" or not matches_path_prefix(
            request.url.path, self.transport_paths
        ):
            return await call_next(request)

        try:
            upstream_token = await self.gateway.resolve_request_token(request)
            presented = request.headers.get("authorization") or request.headers.get(
                ENV_TOKEN_HEADER
            )
            if upstream_token is None and presented:
                raise InvalidTokenError("Bearer could not be resolved")
        except (InvalidTokenError, UpstreamRefreshError) as e:
            logger.warning(
                "Rejected credentials for %s: %s",
                request.url.path,
                e.error_description,
            )
            return self._unauthorized(e)

        request.state.upstream_token = upstream_token
        return await call_next(request)

    @staticmethod
    def _unauthorized(error: GatewayError) -> JSONResponse:
        return JSONResponse(
            {"error": "invalid_token", "error_description": error.user_message},
            status_code=401,
            headers={"WWW-Authenticate": 'Bearer error="invalid_token"'},
        )
