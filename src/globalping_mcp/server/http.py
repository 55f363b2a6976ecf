from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlsplit

import httpx
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import BaseRoute, Route

from globalping_mcp.server.auth.framework import (
    AuthorizationFramework,
    LocalAuthorizationFramework,
)
from globalping_mcp.server.auth.gateway import AuthorizationGateway
from globalping_mcp.server.auth.middleware import UpstreamTokenMiddleware
from globalping_mcp.server.pages import home_page
from globalping_mcp.server.security import OriginValidationMiddleware, OriginValidator
from globalping_mcp.settings import Settings
from globalping_mcp.utilities.logging import get_logger
from globalping_mcp.utilities.storage import KVStorage, create_storage

logger = get_logger(__name__)


def build_allowed_origins(settings: Settings) -> list[str]:
    """Configured origins, plus the public origin of `base_url` when set."""
    origins = list(settings.allowed_origins)
    if settings.base_url:
        parsed = urlsplit(settings.base_url)
        public_origin = f"{parsed.scheme}://{parsed.netloc}"
        if public_origin not in origins:
            origins.append(public_origin)
    return origins


async def _home(request: Request) -> Response:
    return home_page()


def create_app(
    settings: Settings | None = None,
    *,
    storage: KVStorage | None = None,
    framework: AuthorizationFramework | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
    routes: list[BaseRoute] | None = None,
) -> Starlette:
    """Create the gateway's Starlette application.

    Args:
        settings: Settings; read from the environment when omitted.
        storage: Key-value storage for state, tokens and grants. Defaults to
            Redis when `redis_url` is configured, else in-memory storage.
        framework: Downstream authorization framework. Defaults to
            `LocalAuthorizationFramework` over the same storage.
        http_transport: Transport for outbound HTTP calls to the upstream
            OAuth server.
        routes: Additional routes, typically the MCP transport. Requests to
            the transport paths carry the resolved Globalping token on
            `request.state.upstream_token`.
    """
    settings = settings or Settings()
    owns_storage = storage is None
    storage = storage if storage is not None else create_storage(settings.redis_url)
    framework = framework or LocalAuthorizationFramework(
        storage, grant_ttl=settings.grant_ttl_seconds
    )

    gateway = AuthorizationGateway(
        settings, storage, framework, http_transport=http_transport
    )
    validator = OriginValidator(build_allowed_origins(settings))

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("Globalping MCP gateway starting")
        try:
            yield
        finally:
            aclose = getattr(storage, "aclose", None)
            if owns_storage and aclose is not None:
                await aclose()

    app_routes: list[BaseRoute] = [
        Route("/", endpoint=_home, methods=["GET"]),
        *gateway.get_routes(),
        *(routes or []),
    ]
    middleware = [
        Middleware(
            OriginValidationMiddleware,
            validator=validator,
            protected_paths=[*settings.protected_paths, settings.redirect_path],
        ),
        Middleware(
            UpstreamTokenMiddleware,
            gateway=gateway,
            transport_paths=settings.transport_paths,
        ),
    ]

    app = Starlette(routes=app_routes, middleware=middleware, lifespan=lifespan)
    app.state.settings = settings
    app.state.gateway = gateway
    app.state.origin_validator = validator
    return app
