"""Bearer-token authentication for FastAPI routes."""

from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from showup.core.exceptions import AuthError
from showup.core.security import TokenKind, verify_token

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller identity extracted from a verified access token."""

    user_id: str
    email: str


async def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthenticatedUser:
    """FastAPI dependency that requires a valid access token.

    Usage::

        @router.get("/protected")
        async def protected(user: AuthenticatedUser = Depends(require_auth)):
            ...
    """
    if credentials is None:
        raise AuthError("Missing authorization header")

    claims = verify_token(credentials.credentials)
    if claims is None or claims.kind != TokenKind.ACCESS:
        raise AuthError("Invalid token")

    request.state.user_id = claims.user_id
    return AuthenticatedUser(user_id=claims.user_id, email=claims.email)
