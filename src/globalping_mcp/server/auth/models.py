"""Data records persisted or exchanged by the authorization gateway."""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AuthorizationRequest(BaseModel):
    """Snapshot of the downstream client's authorization request.

    Owned by the authorization framework. The gateway stores it next to the
    authorization attempt and hands it back unmodified, including any fields
    it does not know about.
    """

    model_config = ConfigDict(extra="allow")

    response_type: str = "code"
    client_id: str
    redirect_uri: str
    scope: list[str] = Field(default_factory=list)
    state: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None


class AuthorizationAttempt(BaseModel):
    """An in-flight login, keyed by `state` in the state store.

    `client_id` is the ID this server uses toward the upstream server. The
    downstream client's ID lives in `original_request`.
    """

    state: str
    code_verifier: str
    code_challenge: str
    client_id: str
    server_redirect_uri: str
    original_request: dict[str, Any]
    created_at: float = Field(default_factory=time.time)


class UpstreamToken(BaseModel):
    """Token issued by the upstream OAuth server, keyed by access token."""

    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    scope: str | None = None
    expires_in: int
    created_at: int = Field(default_factory=lambda: int(time.time()))

    @property
    def expires_at(self) -> int:
        return self.created_at + self.expires_in

    def expires_within(self, seconds: float, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return self.expires_at - now <= seconds

    @classmethod
    def from_response(
        cls, data: dict[str, Any], default_expires_in: int = 3600
    ) -> UpstreamToken:
        """Build a token from an upstream token endpoint response body."""
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type") or "Bearer",
            scope=data.get("scope"),
            expires_in=int(data.get("expires_in") or default_expires_in),
            created_at=int(data.get("created_at") or time.time()),
        )


class GrantProps(BaseModel):
    """Payload handed to the authorization framework on completion.

    The framework embeds it in whatever it issues to the downstream client;
    the gateway does not persist it.
    """

    access_token: str
    refresh_token: str | None = None
    client_id: str
    user_id: str
    user_name: str | None = None
    is_authenticated: bool = True
    expires_in: int | None = None
    scope: str | None = None
