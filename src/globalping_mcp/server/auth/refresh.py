"""Upstream token refresh."""

from __future__ import annotations

import time

from globalping_mcp.exceptions import UpstreamRefreshError
from globalping_mcp.server.auth.models import GrantProps, UpstreamToken
from globalping_mcp.server.auth.stores import TokenStore
from globalping_mcp.server.auth.tokens import mask_token
from globalping_mcp.server.auth.upstream import UpstreamOAuthClient
from globalping_mcp.utilities.logging import get_logger

logger = get_logger(__name__)

DEFAULT_REFRESH_MARGIN_SECONDS = 300


class TokenRefresher:
    """Refreshes upstream tokens and keeps the token store in step.

    A refreshed token is written under its new access token. When the client
    is handed the new token (`refresh_grant`), the entry for the previous
    access token is deleted. A proactive refresh (`get_valid_token`) keeps
    the client's bearer and points it at the new token instead. Entries are
    replaced, never updated in place.
    """

    def __init__(
        self,
        upstream: UpstreamOAuthClient,
        token_store: TokenStore | None = None,
        *,
        refresh_margin_seconds: float = DEFAULT_REFRESH_MARGIN_SECONDS,
    ):
        self.upstream = upstream
        self.token_store = token_store
        self.refresh_margin_seconds = refresh_margin_seconds

    async def refresh(
        self, refresh_token: str, previous_access_token: str | None = None
    ) -> UpstreamToken:
        token = await self.upstream.refresh(refresh_token)

        if self.token_store is not None:
            await self.token_store.save(token)
            if previous_access_token and previous_access_token != token.access_token:
                await self.token_store.delete(previous_access_token)

        logger.debug("Refreshed upstream token %s", mask_token(token.access_token))
        return token

    async def get_valid_token(
        self, bearer: str, now: float | None = None
    ) -> UpstreamToken | None:
        """Return a usable upstream token for the bearer a client presents.

        Tokens close to expiry are refreshed first. The refreshed token is
        stored under `bearer` as well, so the client can keep using it.
        Returns None when the bearer is unknown or its token expired without
        a refresh token.
        """
        if self.token_store is None:
            return None
        token = await self.token_store.get(bearer)
        if token is None:
            return None

        now = time.time() if now is None else now
        if not token.expires_within(self.refresh_margin_seconds, now=now):
            return token

        if not token.refresh_token:
            if token.expires_at > now:
                return token
            logger.debug("Stored token for %s expired", mask_token(bearer))
            return None

        try:
            refreshed = await self.refresh(token.refresh_token)
        except UpstreamRefreshError:
            if token.expires_at > now:
                logger.warning(
                    "Proactive refresh for %s failed, using the token until expiry",
                    mask_token(bearer),
                )
                return token
            raise

        if refreshed.access_token != bearer:
            await self.token_store.save(refreshed, bearer=bearer)
        return refreshed

    async def refresh_grant(self, props: GrantProps) -> GrantProps:
        """Refresh the upstream token carried in a downstream grant.

        When the grant's token was already refreshed proactively, the refresh
        token stored for its bearer is used, since the one in the grant may
        have been rotated.

        Raises:
            UpstreamRefreshError: no refresh token in the grant, or the upstream
                server rejected it.
        """
        refresh_token = props.refresh_token
        if self.token_store is not None:
            current = await self.token_store.get(props.access_token)
            if current is not None and current.refresh_token:
                refresh_token = current.refresh_token
        if not refresh_token:
            raise UpstreamRefreshError("Grant has no upstream refresh token")

        token = await self.refresh(refresh_token, props.access_token)
        return props.model_copy(
            update={
                "access_token": token.access_token,
                "refresh_token": token.refresh_token,
                "expires_in": token.expires_in,
                "scope": token.scope or props.scope,
            }
        )
