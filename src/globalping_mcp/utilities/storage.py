"""Key-value storage with per-entry time-to-live.

The gateway keeps all cross-request state (authorization attempts, upstream
tokens, downstream grants) in a `KVStorage`. Backends only need read,
write-with-TTL and delete by exact key; `pop` is the delete-and-return
primitive the callback relies on so that a state entry is gone before the
upstream token exchange starts.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from globalping_mcp.utilities.logging import get_logger

if TYPE_CHECKING:
    import redis.asyncio as redis

logger = get_logger(__name__)


@runtime_checkable
class KVStorage(Protocol):
    """Protocol for JSON-document key-value storage with expiry."""

    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def set(
        self, key: str, value: dict[str, Any], ttl: float | None = None
    ) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def pop(self, key: str) -> dict[str, Any] | None: ...


class MemoryStorage:
    """In-process storage. Expired entries are dropped lazily on access."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}

    def _is_live(self, expires_at: float | None) -> bool:
        return expires_at is None or self._clock() < expires_at

    async def get(self, key: str) -> dict[str, Any] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        if not self._is_live(expires_at):
            self._data.pop(key, None)
            return None
        return json.loads(payload)

    async def set(
        self, key: str, value: dict[str, Any], ttl: float | None = None
    ) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        # stored serialized so callers never share mutable state with the store
        self._data[key] = (json.dumps(value), expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def pop(self, key: str) -> dict[str, Any] | None:
        entry = self._data.pop(key, None)
        if entry is None:
            return None
        payload, expires_at = entry
        if not self._is_live(expires_at):
            return None
        return json.loads(payload)


class RedisStorage:
    """Redis-backed storage, shared by every worker of a deployment.

    `pop` uses GETDEL, so two concurrent callbacks for the same state can never
    both receive the entry.
    """

    def __init__(self, client: redis.Redis, prefix: str = "globalping_mcp:"):
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "globalping_mcp:") -> RedisStorage:
        import redis.asyncio as redis

        return cls(redis.from_url(url, encoding="utf-8", decode_responses=True), prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> dict[str, Any] | None:
        value = await self._client.get(self._key(key))
        return json.loads(value) if value else None

    async def set(
        self, key: str, value: dict[str, Any], ttl: float | None = None
    ) -> None:
        if ttl is not None and ttl <= 0:
            # Redis rejects non-positive expiry; the entry is expired on arrival
            await self._client.delete(self._key(key))
            return
        expire = max(1, int(ttl)) if ttl is not None else None
        await self._client.set(self._key(key), json.dumps(value), ex=expire)

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def pop(self, key: str) -> dict[str, Any] | None:
        value = await self._client.getdel(self._key(key))
        return json.loads(value) if value else None

    async def aclose(self) -> None:
        await self._client.aclose()
        logger.debug("Closed Redis storage connection")


def create_storage(redis_url: str | None) -> KVStorage:
    """Build the storage backend for a deployment."""
    if redis_url:
        logger.debug("Using Redis storage")
        return RedisStorage.from_url(redis_url)
    logger.debug("Using in-memory storage")
    return MemoryStorage()
