"""Downstream authorization framework interface and local implementation.

The gateway never issues downstream credentials itself. It hands the upstream
tokens and the resolved user identity to an `AuthorizationFramework`, which
decides what the downstream client receives.
"""

from __future__ import annotations

import secrets
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlencode

from mcp.shared.auth import OAuthToken
from pydantic import ValidationError
from starlette.requests import Request

from globalping_mcp.exceptions import (
    InvalidGrantError,
    InvalidRequestError,
    UpstreamRefreshError,
)
from globalping_mcp.server.auth.models import AuthorizationRequest, GrantProps
from globalping_mcp.server.auth.pkce import verify_code_challenge
from globalping_mcp.utilities.logging import get_logger
from globalping_mcp.utilities.storage import KVStorage

logger = get_logger(__name__)

GRANT_KEY_PREFIX = "grant:"
REFRESH_KEY_PREFIX = "refresh:"
DEFAULT_GRANT_TTL_SECONDS = 600
DEFAULT_REFRESH_TTL_SECONDS = 30 * 24 * 3600

RefreshGrantHook = Callable[[GrantProps], Awaitable[GrantProps]]


@runtime_checkable
class AuthorizationFramework(Protocol):
    """What the gateway needs from the downstream OAuth server."""

    async def parse_authorization_request(
        self, request: Request
    ) -> AuthorizationRequest: ...

    async def complete_authorization(
        self, request: AuthorizationRequest, user_id: str, props: GrantProps
    ) -> str:
        """Finish the downstream flow and return the URL to redirect to."""
        ...

    async def exchange_authorization_code(
        self, form: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Redeem a downstream authorization code for a token response."""
        ...

    async def exchange_refresh_token(
        self, form: Mapping[str, Any], refresh_grant: RefreshGrantHook
    ) -> dict[str, Any]:
        """Redeem a downstream refresh token for a token response.

        `refresh_grant` mints fresh upstream credentials for the grant.
        """
        ...


class LocalAuthorizationFramework:
    """Issues single-use downstream authorization codes from storage.

    Grants live under `grant:<code>` and are bound to the downstream client's
    PKCE challenge, client ID and redirect URI. Redeeming a grant returns the
    upstream tokens it carries and records the grant under
    `refresh:<refresh_token>`, so the client can refresh it later.
    """

    def __init__(
        self,
        storage: KVStorage,
        grant_ttl: float = DEFAULT_GRANT_TTL_SECONDS,
        refresh_ttl: float = DEFAULT_REFRESH_TTL_SECONDS,
    ):
        self._storage = storage
        self.grant_ttl = grant_ttl
        self.refresh_ttl = refresh_ttl

    async def parse_authorization_request(
        self, request: Request
    ) -> AuthorizationRequest:
        params: dict[str, Any] = dict(request.query_params)

        if params.get("response_type", "code") != "code":
            raise InvalidRequestError(
                f"Unsupported response_type: {params['response_type']}"
            )
        if not params.get("client_id") or not params.get("redirect_uri"):
            raise InvalidRequestError("client_id and redirect_uri are required")
        if not params.get("code_challenge"):
            raise InvalidRequestError("code_challenge is required")
        method = params.setdefault("code_challenge_method", "S256")
        if method != "S256":
            raise InvalidRequestError(
                f"Unsupported code_challenge_method: {method}"
            )

        params["scope"] = params.get("scope", "").split()
        try:
            return AuthorizationRequest.model_validate(params)
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid authorization request: {e}") from e

    async def complete_authorization(
        self, request: AuthorizationRequest, user_id: str, props: GrantProps
    ) -> str:
        code = secrets.token_urlsafe(32)
        await self._storage.set(
            f"{GRANT_KEY_PREFIX}{code}",
            {
                "request": request.model_dump(mode="json"),
                "user_id": user_id,
                "props": props.model_dump(mode="json"),
            },
            ttl=self.grant_ttl,
        )
        logger.debug("Issued authorization code for client %s", request.client_id)

        callback_params = {"code": code}
        if request.state is not None:
            callback_params["state"] = request.state
        separator = "&" if "?" in request.redirect_uri else "?"
        return f"{request.redirect_uri}{separator}{urlencode(callback_params)}"

    async def exchange_authorization_code(
        self, form: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Redeem a code issued by `complete_authorization`.

        Raises:
            InvalidRequestError: the form has no code.
            InvalidGrantError: the code is unknown, used or expired, or the
                client ID, redirect URI or PKCE verifier do not match.
        """
        code = form.get("code")
        if not code:
            raise InvalidRequestError("code is required")

        grant = await self._storage.pop(f"{GRANT_KEY_PREFIX}{code}")
        if grant is None:
            raise InvalidGrantError("Authorization code is invalid or expired")

        request = AuthorizationRequest.model_validate(grant["request"])
        props = GrantProps.model_validate(grant["props"])

        if form.get("client_id") != request.client_id:
            raise InvalidGrantError("client_id does not match the authorization code")
        if form.get("redirect_uri") != request.redirect_uri:
            raise InvalidGrantError(
                "redirect_uri does not match the authorization request"
            )
        code_verifier = form.get("code_verifier")
        if not code_verifier or not verify_code_challenge(
            code_verifier, request.code_challenge or ""
        ):
            raise InvalidGrantError("PKCE verification failed")

        await self._save_refresh_record(request, grant["user_id"], props)
        return self._token_response(props)

    async def exchange_refresh_token(
        self, form: Mapping[str, Any], refresh_grant: RefreshGrantHook
    ) -> dict[str, Any]:
        """Refresh a grant issued through `exchange_authorization_code`.

        The record for the presented refresh token is removed before the
        upstream refresh and put back if the upstream server fails, so two
        concurrent refreshes cannot both succeed.

        Raises:
            InvalidRequestError: the form has no refresh token.
            InvalidGrantError: the refresh token is unknown or belongs to
                another client.
            UpstreamRefreshError: the upstream server rejected the refresh.
        """
        refresh_token = form.get("refresh_token")
        if not refresh_token:
            raise InvalidRequestError("refresh_token is required")

        key = f"{REFRESH_KEY_PREFIX}{refresh_token}"
        record = await self._storage.pop(key)
        if record is None:
            raise InvalidGrantError("Refresh token is invalid or expired")

        request = AuthorizationRequest.model_validate(record["request"])
        client_id = form.get("client_id")
        if client_id and client_id != request.client_id:
            await self._storage.set(key, record, ttl=self.refresh_ttl)
            raise InvalidGrantError("client_id does not match the refresh token")

        try:
            props = await refresh_grant(GrantProps.model_validate(record["props"]))
        except UpstreamRefreshError:
            await self._storage.set(key, record, ttl=self.refresh_ttl)
            raise

        await self._save_refresh_record(request, record["user_id"], props)
        logger.debug("Refreshed grant for client %s", request.client_id)
        return self._token_response(props)

    async def _save_refresh_record(
        self, request: AuthorizationRequest, user_id: str, props: GrantProps
    ) -> None:
        if not props.refresh_token:
            return
        await self._storage.set(
            f"{REFRESH_KEY_PREFIX}{props.refresh_token}",
            {
                "request": request.model_dump(mode="json"),
                "user_id": user_id,
                "props": props.model_dump(mode="json"),
            },
            ttl=self.refresh_ttl,
        )

    @staticmethod
    def _token_response(props: GrantProps) -> dict[str, Any]:
        token = OAuthToken(
            access_token=props.access_token,
            token_type="Bearer",
            expires_in=props.expires_in,
            refresh_token=props.refresh_token,
            scope=props.scope,
        )
        return token.model_dump(exclude_none=True)
