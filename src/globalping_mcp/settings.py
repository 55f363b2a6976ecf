from __future__ import annotations as _annotations

import inspect
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self

LOG_LEVEL = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

GLOBALPING_AUTHORIZATION_ENDPOINT = "https://auth.globalping.io/oauth/authorize"
GLOBALPING_TOKEN_ENDPOINT = "https://auth.globalping.io/oauth/token"
GLOBALPING_INTROSPECTION_ENDPOINT = "https://auth.globalping.io/oauth/token/introspect"

DEFAULT_ALLOWED_ORIGINS = [
    # Production origins
    "https://mcp.globalping.io",
    "https://mcp.globalping.dev",
    # Local development origins
    "http://localhost",
    "http://127.0.0.1",
    "https://localhost",
    "https://127.0.0.1",
    "http://[::1]",
    "https://[::1]",
    # Custom schemes used by desktop MCP clients
    "vscode://",
    "claude://",
]


class Settings(BaseSettings):
    """Globalping MCP gateway settings.

    Built once at start-up and handed to `create_app`, which passes it on to
    every component. Instances are frozen.
    """

    model_config = SettingsConfigDict(
        env_prefix="GLOBALPING_MCP_",
        env_file=".env",
        extra="ignore",
        env_nested_delimiter="__",
        frozen=True,
    )

    log_level: LOG_LEVEL = "INFO"
    enable_rich_tracebacks: Annotated[
        bool,
        Field(
            description=inspect.cleandoc(
                """
                If True, will use rich tracebacks for logging.
                """
            )
        ),
    ] = True

    @model_validator(mode="after")
    def setup_logging(self) -> Self:
        """Finalize the settings."""
        from globalping_mcp.utilities.logging import configure_logging

        configure_logging(
            self.log_level, enable_rich_tracebacks=self.enable_rich_tracebacks
        )

        return self

    # HTTP settings
    host: str = "127.0.0.1"
    port: int = 8787

    base_url: Annotated[
        str | None,
        Field(
            description=inspect.cleandoc(
                """
                Public URL of this server, e.g. https://mcp.globalping.io. When
                set, the upstream callback URL is built from it; otherwise the
                origin of the incoming /authorize request is used.
                """
            ),
        ),
    ] = None

    redirect_path: Annotated[
        str,
        Field(
            description="Callback path registered with the upstream OAuth application.",
        ),
    ] = "/auth/callback"

    # Upstream OAuth server
    client_id: Annotated[
        str,
        Field(
            description="Client ID this server uses toward the upstream OAuth server.",
        ),
    ] = ""
    client_secret: Annotated[
        SecretStr | None,
        Field(
            description=inspect.cleandoc(
                """
                Client secret for the upstream OAuth server. Leave unset for a
                public client, in which case only client_id is sent.
                """
            ),
        ),
    ] = None
    authorization_endpoint: str = GLOBALPING_AUTHORIZATION_ENDPOINT
    token_endpoint: str = GLOBALPING_TOKEN_ENDPOINT
    introspection_endpoint: str = GLOBALPING_INTROSPECTION_ENDPOINT
    scope: str = "measurements"
    http_timeout_seconds: float = 30

    introspect_user: Annotated[
        bool,
        Field(
            description=inspect.cleandoc(
                """
                If True, the access token obtained in the callback is introspected
                to resolve the user identity handed to the authorization framework.
                If False, the downstream client ID is used as the user identity.
                """
            ),
        ),
    ] = True

    # Token lifecycle
    state_ttl_seconds: Annotated[
        int,
        Field(
            ge=0,
            description="How long an authorization attempt stays consumable.",
        ),
    ] = 600
    grant_ttl_seconds: Annotated[
        int,
        Field(
            ge=0,
            description="How long a downstream authorization code stays redeemable.",
        ),
    ] = 600
    refresh_margin_seconds: Annotated[
        int,
        Field(
            ge=0,
            description=inspect.cleandoc(
                """
                Stored upstream tokens expiring within this many seconds are
                refreshed before they are reused.
                """
            ),
        ),
    ] = 300
    persist_upstream_tokens: Annotated[
        bool,
        Field(
            description=inspect.cleandoc(
                """
                If True, upstream tokens obtained in the callback or through a
                refresh are kept in the token store, keyed by access token, so a
                bearer token presented later can be resolved and refreshed
                server-side.
                """
            ),
        ),
    ] = True

    # Storage
    redis_url: Annotated[
        str | None,
        Field(
            description=inspect.cleandoc(
                """
                Redis connection URL for state and token storage. If None, an
                in-process memory store is used, which only works for a single
                worker.
                """
            ),
        ),
    ] = None

    # Origin / Host validation
    allowed_origins: Annotated[
        list[str],
        Field(
            default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS),
            description=inspect.cleandoc(
                """
                Explicit allow-list of request origins. Entries are matched
                exactly; localhost, 127.0.0.1 and [::1] entries also match any
                port. Hostnames derived from these entries form the Host header
                allow-list.
                """
            ),
        ),
    ]
    protected_paths: Annotated[
        list[str],
        Field(
            default_factory=lambda: [
                "/authorize",
                "/token",
                "/mcp",
                "/sse",
                "/streamable-http",
            ],
            description=inspect.cleandoc(
                """
                Path prefixes that require a valid Origin and Host header. The
                callback path is always added.
                """
            ),
        ),
    ]
    transport_paths: Annotated[
        list[str],
        Field(
            default_factory=lambda: ["/mcp", "/sse", "/streamable-http"],
            description=inspect.cleandoc(
                """
                Path prefixes of the MCP transport. Bearer tokens presented on
                these paths are resolved to the upstream token to use.
                """
            ),
        ),
    ]
    allowed_client_redirect_uris: Annotated[
        list[str] | None,
        Field(
            default=None,
            description=inspect.cleandoc(
                """
                Redirect URI patterns accepted from downstream clients besides this
                server's own callback URL. Patterns support wildcards, e.g.
                "http://localhost:*". If None, only loopback redirect URIs are
                accepted. An empty list accepts nothing beyond the callback URL.
                """
            ),
        ),
    ] = None

    @field_validator("redirect_path")
    @classmethod
    def _normalize_redirect_path(cls, value: str) -> str:
        return value if value.startswith("/") else f"/{value}"

    @field_validator("base_url")
    @classmethod
    def _strip_base_url(cls, value: str | None) -> str | None:
        return value.rstrip("/") if value else value
