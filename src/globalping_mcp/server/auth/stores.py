"""State and token stores on top of `KVStorage`."""

from __future__ import annotations

from globalping_mcp.server.auth.models import AuthorizationAttempt, UpstreamToken
from globalping_mcp.server.auth.tokens import mask_token
from globalping_mcp.utilities.logging import get_logger
from globalping_mcp.utilities.storage import KVStorage

logger = get_logger(__name__)

STATE_KEY_PREFIX = "state:"
TOKEN_KEY_PREFIX = "token:"
DEFAULT_STATE_TTL_SECONDS = 600


class StateStore:
    """Holds in-flight authorization attempts, keyed by their state value.

    An attempt can be consumed once: `consume` removes the entry in the same
    storage operation that reads it.
    """

    def __init__(self, storage: KVStorage, ttl: float = DEFAULT_STATE_TTL_SECONDS):
        self._storage = storage
        self.ttl = ttl

    async def save(self, attempt: AuthorizationAttempt) -> None:
        await self._storage.set(
            f"{STATE_KEY_PREFIX}{attempt.state}",
            attempt.model_dump(mode="json"),
            ttl=self.ttl,
        )

    async def consume(self, state: str) -> AuthorizationAttempt | None:
        data = await self._storage.pop(f"{STATE_KEY_PREFIX}{state}")
        if data is None:
            return None
        return AuthorizationAttempt.model_validate(data)


class TokenStore:
    """Holds upstream tokens keyed by bearer, expiring with the token.

    The key is the token's own access token unless another bearer is given,
    which lets a client keep presenting a bearer whose upstream token has
    since been refreshed.
    """

    def __init__(self, storage: KVStorage):
        self._storage = storage

    async def save(self, token: UpstreamToken, bearer: str | None = None) -> None:
        bearer = bearer or token.access_token
        await self._storage.set(
            f"{TOKEN_KEY_PREFIX}{bearer}",
            token.model_dump(mode="json"),
            ttl=token.expires_in,
        )
        logger.debug("Stored upstream token under %s", mask_token(bearer))

    async def get(self, bearer: str) -> UpstreamToken | None:
        data = await self._storage.get(f"{TOKEN_KEY_PREFIX}{bearer}")
        if data is None:
            return None
        return UpstreamToken.model_validate(data)

    async def delete(self, bearer: str) -> None:
        await self._storage.delete(f"{TOKEN_KEY_PREFIX}{bearer}")
