"""Custom exceptions for the Globalping MCP gateway."""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors raised by the authorization gateway.

    `error` is the machine-readable code, `error_description` the detail that
    is safe to log. `user_message` is what a browser or client gets to see.
    """

    error: str = "server_error"
    user_message: str = "An unexpected error occurred."
    status_code: int = 400

    def __init__(self, error_description: str | None = None):
        self.error_description = error_description or self.user_message
        super().__init__(self.error_description)


class AuthenticationError(GatewayError):
    """The upstream server redirected back with an `error` parameter."""

    error = "access_denied"
    user_message = "Authentication with Globalping failed."


class InvalidRequestError(GatewayError):
    """Missing or malformed code, state or redirect URI."""

    error = "invalid_request"
    user_message = "The authorization request is invalid."


class InvalidRedirectUriError(InvalidRequestError):
    user_message = "Invalid redirect URI."


class StateExpiredError(GatewayError):
    """State expired, was already consumed, or never existed."""

    error = "state_expired_or_missing"
    user_message = "State is outdated or missing. Please start the login again."


class StateMismatchError(GatewayError):
    error = "state_mismatch"
    user_message = "The authorization request could not be verified."


class UpstreamTokenError(GatewayError):
    error = "upstream_token_error"
    user_message = "Failed to get an access token from Globalping."
    status_code = 502


class UpstreamIntrospectionError(GatewayError):
    error = "upstream_introspection_error"
    user_message = "Failed to get user data from Globalping."
    status_code = 502


class UpstreamRefreshError(GatewayError):
    error = "upstream_refresh_error"
    user_message = "Failed to refresh the Globalping access token."


class InvalidGrantError(GatewayError):
    """A downstream authorization code could not be redeemed."""

    error = "invalid_grant"
    user_message = "The authorization grant is invalid or expired."


class InvalidTokenError(GatewayError):
    """A bearer token on a transport request could not be resolved."""

    error = "invalid_token"
    user_message = "The access token is invalid or expired."
    status_code = 401


class OriginRejectedError(GatewayError):
    error = "origin_rejected"
    user_message = "Origin not allowed."
    status_code = 403


class HostRejectedError(GatewayError):
    error = "host_rejected"
    user_message = "Host not allowed."
    status_code = 403
