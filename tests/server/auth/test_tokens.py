"""Tests for bearer token helpers."""

import pytest

from globalping_mcp.server.auth.tokens import (
    extract_token_value,
    is_api_token,
    is_oauth_token,
    mask_token,
    parse_authorization_header,
    sanitize_token,
)

API_TOKEN = "abcdefghijklmnopqrstuvwxyz123456"


class TestSanitizeToken:
    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty(self, value):
        assert sanitize_token(value) == ""

    def test_strips_bearer_prefix(self):
        assert sanitize_token("  Bearer abc  ") == "abc"

    def test_plain_token(self):
        assert sanitize_token(" abc ") == "abc"


class TestClassification:
    def test_extract_token_value(self):
        assert extract_token_value("Bearer  abc ") == "abc"
        assert extract_token_value("abc") == "abc"

    def test_oauth_token_has_three_parts(self):
        assert is_oauth_token("user:grant:secret")
        assert is_oauth_token("Bearer user:grant:secret")
        assert not is_oauth_token("user:grant")
        assert not is_oauth_token(API_TOKEN)

    def test_api_token(self):
        assert is_api_token(API_TOKEN)
        assert is_api_token(f"Bearer {API_TOKEN}")

    @pytest.mark.parametrize(
        "token",
        [
            API_TOKEN[:-1],
            API_TOKEN + "7",
            API_TOKEN[:-1] + "-",
            "a:b:c",
        ],
    )
    def test_not_api_token(self, token):
        assert not is_api_token(token)


class TestParseAuthorizationHeader:
    def test_bearer(self):
        assert parse_authorization_header("Bearer abc") == "abc"

    def test_scheme_is_case_insensitive(self):
        assert parse_authorization_header("bearer abc") == "abc"

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer   ", "Basic abc"])
    def test_rejected(self, header):
        assert parse_authorization_header(header) is None


class TestMaskToken:
    def test_short_tokens_fully_masked(self):
        assert mask_token("short") == "***"
        assert mask_token("a" * 14) == "***"

    def test_long_token_shows_middle_slice(self):
        assert mask_token("0123456789abcdefghij") == "789abcde..."

    def test_never_contains_full_token(self):
        assert API_TOKEN not in mask_token(API_TOKEN)
