"""Tests for the upstream OAuth client against a mocked Globalping server."""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from globalping_mcp.exceptions import (
    UpstreamIntrospectionError,
    UpstreamRefreshError,
    UpstreamTokenError,
)
from globalping_mcp.server.auth.upstream import UpstreamOAuthClient
from globalping_mcp.settings import Settings


@pytest.fixture
def client(settings, upstream) -> UpstreamOAuthClient:
    return UpstreamOAuthClient(settings, transport=upstream.transport)


class TestAuthorizationUrl:
    def test_contains_all_parameters(self, client):
        url = client.authorization_url(
            redirect_uri="https://mcp.globalping.io/auth/callback",
            state="the-state",
            code_challenge="the-challenge",
        )
        parsed = urlparse(url)
        params = parse_qs(parsed.query)

        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == (
            "https://auth.globalping.io/oauth/authorize"
        )
        assert params == {
            "client_id": ["gp-client"],
            "response_type": ["code"],
            "redirect_uri": ["https://mcp.globalping.io/auth/callback"],
            "state": ["the-state"],
            "code_challenge": ["the-challenge"],
            "code_challenge_method": ["S256"],
            "scope": ["measurements"],
        }


class TestExchangeCode:
    async def test_sends_form_encoded_exchange(self, client, upstream):
        token = await client.exchange_code(
            code="abc",
            redirect_uri="https://mcp.globalping.io/auth/callback",
            code_verifier="verifier",
        )

        assert token.access_token == "T"
        assert token.refresh_token == "R"
        assert token.expires_in == 3600

        [request] = upstream.requests
        assert request.method == "POST"
        assert request.headers["content-type"].startswith(
            "application/x-www-form-urlencoded"
        )
        assert request.headers["accept"] == "application/json"
        assert upstream.token_forms() == [
            {
                "grant_type": "authorization_code",
                "code": "abc",
                "redirect_uri": "https://mcp.globalping.io/auth/callback",
                "code_verifier": "verifier",
                "client_id": "gp-client",
                "client_secret": "gp-secret",
            }
        ]

    async def test_public_client_sends_no_secret(self, upstream):
        client = UpstreamOAuthClient(
            Settings(client_id="gp-public"), transport=upstream.transport
        )
        await client.exchange_code(code="abc", redirect_uri="x", code_verifier="v")

        [form] = upstream.token_forms()
        assert form["client_id"] == "gp-public"
        assert "client_secret" not in form

    async def test_non_2xx_raises_without_leaking_body(self, client, upstream):
        upstream.token_status = 400
        upstream.token_body = "secret upstream diagnostics"

        with pytest.raises(UpstreamTokenError) as exc_info:
            await client.exchange_code(code="abc", redirect_uri="x", code_verifier="v")

        assert exc_info.value.status_code == 502
        assert "secret upstream diagnostics" not in exc_info.value.user_message

    async def test_error_body_raises(self, client, upstream):
        upstream.token_status = 400
        upstream.token_body = {"error": "invalid_grant"}

        with pytest.raises(UpstreamTokenError):
            await client.exchange_code(code="abc", redirect_uri="x", code_verifier="v")

    async def test_missing_access_token_raises(self, client, upstream):
        upstream.token_body = {"token_type": "bearer"}

        with pytest.raises(UpstreamTokenError):
            await client.exchange_code(code="abc", redirect_uri="x", code_verifier="v")

    async def test_network_error_raises(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = UpstreamOAuthClient(settings, transport=httpx.MockTransport(handler))
        with pytest.raises(UpstreamTokenError):
            await client.exchange_code(code="abc", redirect_uri="x", code_verifier="v")

    async def test_default_expiry(self, client, upstream):
        upstream.token_body = {"access_token": "T", "token_type": "bearer"}

        token = await client.exchange_code(
            code="abc", redirect_uri="x", code_verifier="v"
        )

        assert token.expires_in == 3600
        assert token.refresh_token is None


class TestRefresh:
    async def test_sends_refresh_grant(self, client, upstream):
        upstream.token_body = {
            "access_token": "T2",
            "refresh_token": "R2",
            "token_type": "bearer",
            "expires_in": 1800,
        }

        token = await client.refresh("R")

        assert token.access_token == "T2"
        assert token.refresh_token == "R2"
        assert token.expires_in == 1800
        [form] = upstream.token_forms()
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "R"
        assert form["client_id"] == "gp-client"
        assert form["client_secret"] == "gp-secret"

    async def test_keeps_refresh_token_when_not_rotated(self, client, upstream):
        upstream.token_body = {"access_token": "T2", "expires_in": 60}

        token = await client.refresh("R")

        assert token.refresh_token == "R"

    async def test_failure_raises(self, client, upstream):
        upstream.token_status = 401
        upstream.token_body = {"error": "invalid_grant"}

        with pytest.raises(UpstreamRefreshError):
            await client.refresh("R")


class TestIntrospect:
    async def test_posts_token(self, client, upstream):
        user_data = await client.introspect("T")

        assert user_data["username"] == "alice"
        assert upstream.introspection_forms() == [{"token": "T"}]

    async def test_non_2xx_raises(self, client, upstream):
        upstream.introspection_status = 500
        upstream.introspection_body = "boom"

        with pytest.raises(UpstreamIntrospectionError):
            await client.introspect("T")

    async def test_inactive_token_raises(self, client, upstream):
        upstream.introspection_body = {"active": False}

        with pytest.raises(UpstreamIntrospectionError):
            await client.introspect("T")

    async def test_invalid_json_raises(self, client, upstream):
        upstream.introspection_body = "not json"

        with pytest.raises(UpstreamIntrospectionError):
            await client.introspect("T")
