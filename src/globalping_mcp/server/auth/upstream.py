"""Client for the upstream Globalping OAuth server."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlencode

import httpx
from authlib.integrations.httpx_client import AsyncOAuth2Client

from globalping_mcp.exceptions import (
    UpstreamIntrospectionError,
    UpstreamRefreshError,
    UpstreamTokenError,
)
from globalping_mcp.server.auth.models import UpstreamToken
from globalping_mcp.server.auth.tokens import mask_token
from globalping_mcp.settings import Settings
from globalping_mcp.utilities.logging import get_logger

logger = get_logger(__name__)


def _raise_for_status(response: httpx.Response) -> httpx.Response:
    """Compliance hook: authlib only rejects 5xx or bodies with an `error` key."""
    if not response.is_success:
        # upstream bodies stay in the log, never in a response
        logger.error(
            "Upstream token endpoint returned %s: %s",
            response.status_code,
            response.text,
        )
        response.raise_for_status()
    return response


class UpstreamOAuthClient:
    """Talks to the upstream authorize, token and introspection endpoints.

    Token requests go through authlib's `AsyncOAuth2Client`; the client ID is
    always sent in the form body, together with the client secret when one is
    configured. A fresh HTTP client is opened per call and closed when the
    call returns.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self._transport = transport

    def _client_secret(self) -> str | None:
        secret = self.settings.client_secret
        return secret.get_secret_value() if secret else None

    def _oauth_client(self, client_id: str | None = None) -> AsyncOAuth2Client:
        client_secret = self._client_secret()
        client = AsyncOAuth2Client(
            client_id=client_id or self.settings.client_id,
            client_secret=client_secret,
            token_endpoint_auth_method="client_secret_post"
            if client_secret
            else "none",
            timeout=self.settings.http_timeout_seconds,
            transport=self._transport,
        )
        client.register_compliance_hook("access_token_response", _raise_for_status)
        client.register_compliance_hook("refresh_token_response", _raise_for_status)
        return client

    def authorization_url(
        self, *, redirect_uri: str, state: str, code_challenge: str
    ) -> str:
        """Build the upstream authorize URL for one authorization attempt."""
        params = {
            "client_id": self.settings.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "scope": self.settings.scope,
        }
        separator = "&" if "?" in self.settings.authorization_endpoint else "?"
        return f"{self.settings.authorization_endpoint}{separator}{urlencode(params)}"

    async def exchange_code(
        self,
        *,
        code: str,
        redirect_uri: str,
        code_verifier: str,
        client_id: str | None = None,
    ) -> UpstreamToken:
        """Exchange an upstream authorization code for tokens.

        `client_id` defaults to the configured upstream client ID.

        Raises:
            UpstreamTokenError: the upstream server rejected the exchange or
                could not be reached.
        """
        try:
            async with self._oauth_client(client_id) as oauth_client:
                token_response: dict[str, Any] = await oauth_client.fetch_token(  # type: ignore[misc]
                    url=self.settings.token_endpoint,
                    grant_type="authorization_code",
                    code=code,
                    redirect_uri=redirect_uri,
                    code_verifier=code_verifier,
                )
        except Exception as e:
            logger.error("Upstream authorization code exchange failed: %s", e)
            raise UpstreamTokenError(
                f"Upstream authorization code exchange failed: {e}"
            ) from e

        if not token_response.get("access_token"):
            logger.error("Upstream token response has no access_token")
            raise UpstreamTokenError("Upstream token response has no access_token")

        token = UpstreamToken.from_response(dict(token_response))
        logger.debug(
            "Exchanged upstream code for token %s", mask_token(token.access_token)
        )
        return token

    async def refresh(self, refresh_token: str) -> UpstreamToken:
        """Use a refresh token to obtain a new upstream token.

        If the upstream server does not rotate the refresh token, the one that
        was sent is kept on the returned token.

        Raises:
            UpstreamRefreshError: the upstream server rejected the refresh.
        """
        try:
            async with self._oauth_client() as oauth_client:
                token_response: dict[str, Any] = await oauth_client.refresh_token(  # type: ignore[misc]
                    url=self.settings.token_endpoint,
                    refresh_token=refresh_token,
                )
        except Exception as e:
            logger.error("Upstream refresh token exchange failed: %s", e)
            raise UpstreamRefreshError(
                f"Upstream refresh token exchange failed: {e}"
            ) from e

        if not token_response.get("access_token"):
            raise UpstreamRefreshError("Upstream refresh response has no access_token")

        data = dict(token_response)
        data.setdefault("refresh_token", refresh_token)
        return UpstreamToken.from_response(data)

    async def introspect(self, access_token: str) -> dict[str, Any]:
        """Return the introspection document for an access token.

        Raises:
            UpstreamIntrospectionError: non-2xx response, unreadable body, or
                an inactive token.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.http_timeout_seconds,
                transport=self._transport,
            ) as http_client:
                response = await http_client.post(
                    self.settings.introspection_endpoint,
                    data={"token": access_token},
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error("Upstream introspection request failed: %s", e)
            raise UpstreamIntrospectionError(
                f"Upstream introspection request failed: {e}"
            ) from e

        if not response.is_success:
            logger.error(
                "Upstream introspection endpoint returned %s: %s",
                response.status_code,
                response.text,
            )
            raise UpstreamIntrospectionError(
                f"Upstream introspection returned {response.status_code}"
            )

        try:
            user_data = response.json()
        except ValueError as e:
            raise UpstreamIntrospectionError(
                "Upstream introspection returned invalid JSON"
            ) from e

        if not isinstance(user_data, dict) or user_data.get("active") is False:
            raise UpstreamIntrospectionError("Upstream token is not active")
        return user_data
