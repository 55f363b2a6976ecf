"""Delegated authorization gateway.

Sits between a downstream MCP client and the upstream Globalping OAuth
server. Toward the client it is the authorization server (through an
`AuthorizationFramework`); toward Globalping it is an OAuth client using
authorization code + PKCE.

Flow:
1. `/authorize` - the framework parses the client's request, the gateway
   stores an `AuthorizationAttempt` under a fresh state value and redirects
   the browser to Globalping.
2. `/auth/callback` - the attempt is popped from the state store before the
   upstream code is exchanged, so a state value can complete at most one
   exchange. The user is resolved through introspection and the framework
   finishes the downstream flow.
3. `/token` - downstream code redemption and refresh, both delegated to the
   framework. A refresh mints fresh upstream tokens through the refresher.
"""

from __future__ import annotations

from typing import Any

import httpx
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from globalping_mcp.exceptions import (
    AuthenticationError,
    GatewayError,
    InvalidGrantError,
    InvalidRedirectUriError,
    InvalidRequestError,
    StateExpiredError,
    StateMismatchError,
    UpstreamIntrospectionError,
    UpstreamRefreshError,
)
from globalping_mcp.server.auth.framework import AuthorizationFramework
from globalping_mcp.server.auth.models import (
    AuthorizationAttempt,
    AuthorizationRequest,
    GrantProps,
    UpstreamToken,
)
from globalping_mcp.server.auth.pkce import generate_pkce_pair, generate_state
from globalping_mcp.server.auth.redirect_validation import validate_redirect_uri
from globalping_mcp.server.auth.refresh import TokenRefresher
from globalping_mcp.server.auth.stores import StateStore, TokenStore
from globalping_mcp.server.auth.tokens import (
    is_api_token,
    mask_token,
    parse_authorization_header,
    sanitize_token,
)
from globalping_mcp.server.auth.upstream import UpstreamOAuthClient
from globalping_mcp.server.pages import error_page, internal_error_page
from globalping_mcp.settings import Settings
from globalping_mcp.utilities.logging import get_logger
from globalping_mcp.utilities.storage import KVStorage

logger = get_logger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}
ENV_TOKEN_HEADER = "x-mcp-env-globalping_token"


def _token_error(
    error: str, description: str, status_code: int = 400
) -> JSONResponse:
    return JSONResponse(
        {"error": error, "error_description": description},
        status_code=status_code,
        headers=NO_STORE_HEADERS,
    )


class AuthorizationGateway:
    """Authorization initiator, callback handler and token endpoint."""

    def __init__(
        self,
        settings: Settings,
        storage: KVStorage,
        framework: AuthorizationFramework,
        *,
        upstream: UpstreamOAuthClient | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.framework = framework
        self.upstream = upstream or UpstreamOAuthClient(
            settings, transport=http_transport
        )
        self.state_store = StateStore(storage, ttl=settings.state_ttl_seconds)
        self.token_store: TokenStore | None = (
            TokenStore(storage) if settings.persist_upstream_tokens else None
        )
        self.refresher = TokenRefresher(
            self.upstream,
            self.token_store,
            refresh_margin_seconds=settings.refresh_margin_seconds,
        )

    def callback_url(self, origin: str) -> str:
        return f"{origin.rstrip('/')}{self.settings.redirect_path}"

    def is_allowed_redirect_uri(self, redirect_uri: str, origin: str) -> bool:
        if redirect_uri == self.callback_url(origin):
            return True
        return validate_redirect_uri(
            redirect_uri, self.settings.allowed_client_redirect_uris
        )

    # -------------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------------

    async def authorize(
        self, origin: str, original_request: AuthorizationRequest
    ) -> str:
        """Start an upstream login and return the upstream authorize URL.

        Args:
            origin: Public origin of this server, used to build the callback
                URL sent upstream.
            original_request: The downstream request, stored unmodified.

        Raises:
            InvalidRedirectUriError: the downstream redirect URI is not allowed.
        """
        if not self.is_allowed_redirect_uri(original_request.redirect_uri, origin):
            logger.warning(
                "Rejected redirect URI %s for client %s",
                original_request.redirect_uri,
                original_request.client_id,
            )
            raise InvalidRedirectUriError(
                f"Redirect URI not allowed: {original_request.redirect_uri}"
            )

        code_verifier, code_challenge = generate_pkce_pair()
        state = generate_state()
        server_redirect_uri = self.callback_url(origin)

        await self.state_store.save(
            AuthorizationAttempt(
                state=state,
                code_verifier=code_verifier,
                code_challenge=code_challenge,
                client_id=self.settings.client_id,
                server_redirect_uri=server_redirect_uri,
                original_request=original_request.model_dump(mode="json"),
            )
        )

        logger.debug(
            "Started authorization for client %s, redirecting upstream",
            original_request.client_id,
        )
        return self.upstream.authorization_url(
            redirect_uri=server_redirect_uri,
            state=state,
            code_challenge=code_challenge,
        )

    async def complete_callback(
        self, code: str | None, state: str | None, error: str | None = None
    ) -> str:
        """Complete an upstream login and return the downstream redirect target.

        Raises:
            AuthenticationError: the upstream server sent an error.
            InvalidRequestError: code or state missing.
            StateExpiredError: no pending attempt for this state.
            StateMismatchError: the stored attempt belongs to another state.
            UpstreamTokenError: the code exchange failed.
            UpstreamIntrospectionError: the user could not be resolved.
        """
        if error:
            raise AuthenticationError(f"Upstream returned error: {error}")
        if not code or not state:
            raise InvalidRequestError("Code and state are required")

        attempt = await self.state_store.consume(state)
        if attempt is None:
            raise StateExpiredError(f"No pending authorization for state {state[:8]}")
        if attempt.state != state:
            raise StateMismatchError("Stored authorization state does not match")

        token = await self.upstream.exchange_code(
            code=code,
            redirect_uri=attempt.server_redirect_uri,
            code_verifier=attempt.code_verifier,
            client_id=attempt.client_id,
        )

        request = AuthorizationRequest.model_validate(attempt.original_request)
        user_id, user_name = await self._resolve_user(token, request.client_id)

        if self.token_store is not None:
            await self.token_store.save(token)

        props = GrantProps(
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            client_id=request.client_id,
            user_id=user_id,
            user_name=user_name,
            is_authenticated=True,
            expires_in=token.expires_in,
            scope=token.scope,
        )
        redirect_to = await self.framework.complete_authorization(
            request, user_id, props
        )
        logger.info("Authorization completed for user %s", user_id)
        return redirect_to

    async def _resolve_user(
        self, token: UpstreamToken, downstream_client_id: str
    ) -> tuple[str, str | None]:
        if not self.settings.introspect_user:
            return downstream_client_id, None

        user_data = await self.upstream.introspect(token.access_token)
        user_name = user_data.get("username")
        user_id = user_name or user_data.get("sub") or user_data.get("client_id")
        if not user_id:
            raise UpstreamIntrospectionError("Introspection returned no user identity")
        return str(user_id), user_name

    # -------------------------------------------------------------------------
    # Bearer resolution
    # -------------------------------------------------------------------------

    async def resolve_upstream_token(
        self, authorization_header: str | None
    ) -> str | None:
        """Map an incoming bearer to the upstream token to call Globalping with.

        Globalping API tokens pass through unchanged. Other tokens are looked
        up in the token store and refreshed when close to expiry; without a
        token store they pass through as well. Returns None for missing or
        unknown tokens.
        """
        token = parse_authorization_header(authorization_header)
        if token is None:
            return None
        if is_api_token(token) or self.token_store is None:
            return token

        upstream_token = await self.refresher.get_valid_token(token)
        if upstream_token is None:
            logger.debug("Unknown or expired bearer %s", mask_token(token))
            return None
        return upstream_token.access_token

    async def resolve_request_token(self, request: Request) -> str | None:
        """Resolve the upstream token for a transport request.

        The `Authorization` header wins; clients that cannot set it may pass a
        Globalping token in the `x-mcp-env-GLOBALPING_TOKEN` header instead.
        """
        header = request.headers.get("authorization")
        if not header:
            env_token = sanitize_token(request.headers.get(ENV_TOKEN_HEADER))
            header = f"Bearer {env_token}" if env_token else None
        return await self.resolve_upstream_token(header)

    # -------------------------------------------------------------------------
    # Routes
    # -------------------------------------------------------------------------

    def get_routes(self) -> list[Route]:
        return [
            Route("/authorize", endpoint=self._handle_authorize, methods=["GET"]),
            Route(
                self.settings.redirect_path,
                endpoint=self._handle_callback,
                methods=["GET"],
            ),
            Route("/token", endpoint=self._handle_token, methods=["POST"]),
        ]

    def _request_origin(self, request: Request) -> str:
        if self.settings.base_url:
            return self.settings.base_url
        return f"{request.url.scheme}://{request.url.netloc}"

    async def _handle_authorize(self, request: Request) -> Response:
        try:
            original_request = await self.framework.parse_authorization_request(
                request
            )
            upstream_url = await self.authorize(
                self._request_origin(request), original_request
            )
        except GatewayError as e:
            logger.warning("Authorization request rejected: %s", e.error_description)
            return error_page(e)
        return RedirectResponse(url=upstream_url, status_code=302)

    async def _handle_callback(self, request: Request) -> Response:
        params = request.query_params
        try:
            redirect_to = await self.complete_callback(
                params.get("code"), params.get("state"), params.get("error")
            )
        except GatewayError as e:
            logger.error("Authorization callback failed: %s", e.error_description)
            return error_page(e)
        except Exception as e:
            logger.error("Error in authorization callback: %s", e, exc_info=True)
            return internal_error_page()
        return RedirectResponse(url=redirect_to, status_code=302)

    async def _handle_token(self, request: Request) -> JSONResponse:
        form = await request.form()
        data: dict[str, Any] = {
            key: value for key, value in form.items() if isinstance(value, str)
        }
        grant_type = data.get("grant_type")

        if grant_type == "authorization_code":
            try:
                token_data = await self.framework.exchange_authorization_code(data)
            except (InvalidGrantError, InvalidRequestError) as e:
                logger.warning("Code redemption failed: %s", e.error_description)
                return _token_error(e.error, e.user_message)
            return JSONResponse(token_data, headers=NO_STORE_HEADERS)

        if grant_type == "refresh_token":
            try:
                token_data = await self.framework.exchange_refresh_token(
                    data, self.refresher.refresh_grant
                )
            except (InvalidGrantError, InvalidRequestError) as e:
                logger.warning("Refresh rejected: %s", e.error_description)
                return _token_error(e.error, e.user_message)
            except UpstreamRefreshError as e:
                logger.warning("Refresh failed: %s", e.error_description)
                return _token_error("invalid_grant", e.user_message)
            return JSONResponse(token_data, headers=NO_STORE_HEADERS)

        logger.error("Unsupported grant type: %s", grant_type)
        return _token_error(
            "unsupported_grant_type", f"Unsupported grant type: {grant_type}"
        )
