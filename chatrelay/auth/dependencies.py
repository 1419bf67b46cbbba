"""
FastAPI dependencies for authentication.

Clients send ``Authorization: Bearer <token>``. EventSource clients cannot set
headers, so the stream route also accepts a ``token`` query parameter.
"""

from typing import Annotated

from fastapi import Depends, Request

from chatrelay.auth.tokens import Authenticator
from chatrelay.core import ForbiddenError, UnauthorizedError, identity_ctx


def get_bearer_token(request: Request) -> str | None:
    """Extract the token from the Authorization header or ``token`` query parameter."""
    header = request.headers.get("authorization")
    if header:
        scheme, _, credentials = header.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    return request.query_params.get("token") or None


async def require_identity(request: Request) -> str:
    """
    Require a verified identity.

    Raises:
        UnauthorizedError: If no token was presented.
        InvalidCredentialError: If the token fails verification.
    """
    token = get_bearer_token(request)
    if not token:
        raise UnauthorizedError("Authentication required")

    authenticator: Authenticator = request.app.state.authenticator
    identity = authenticator.verify(token)
    identity_ctx.set(identity)
    return identity


async def require_admin(
    request: Request,
    identity: Annotated[str, Depends(require_identity)],
) -> str:
    """Require an identity listed in ``admin_identities``."""
    if identity not in request.app.state.settings.admin_identities_set:
        raise ForbiddenError("Admin access required")
    return identity


# Type aliases for cleaner dependency injection
RequireIdentity = Annotated[str, Depends(require_identity)]
RequireAdmin = Annotated[str, Depends(require_admin)]
