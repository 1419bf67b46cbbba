"""Authentication module for chatrelay."""

from chatrelay.auth.dependencies import (
    RequireAdmin,
    RequireIdentity,
    get_bearer_token,
    require_admin,
    require_identity,
)
from chatrelay.auth.tokens import Authenticator, TokenAuthenticator

__all__ = [
    # Tokens
    "Authenticator",
    "TokenAuthenticator",
    # Dependencies
    "get_bearer_token",
    "require_identity",
    "require_admin",
    # Type aliases
    "RequireIdentity",
    "RequireAdmin",
]
