from .framework import AuthorizationFramework, LocalAuthorizationFramework
from .gateway import AuthorizationGateway
from .middleware import UpstreamTokenMiddleware
from .models import (
    AuthorizationAttempt,
    AuthorizationRequest,
    GrantProps,
    UpstreamToken,
)
from .refresh import TokenRefresher
from .upstream import UpstreamOAuthClient

__all__ = [
    "AuthorizationAttempt",
    "AuthorizationFramework",
    "AuthorizationGateway",
    "AuthorizationRequest",
    "GrantProps",
    "LocalAuthorizationFramework",
    "TokenRefresher",
    "UpstreamOAuthClient",
    "UpstreamToken",
    "UpstreamTokenMiddleware",
]
