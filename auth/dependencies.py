"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive in the Authorization: Bearer <token> header. Only
ACCESS-type tokens are accepted here; presenting a refresh token as a bearer
credential fails the type-claim check.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises AuthenticationError (401) if
unauthenticated.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. It does not import api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import AuthenticationError
from auth.models import User
from auth.service import PLEASE_AUTHENTICATE, AuthService


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService built by the application lifespan."""
    return request.app.state.auth_service


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request via its bearer access token. Never raises."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    try:
        return get_auth_service(request).user_for_access_token(auth_header[7:])
    except AuthenticationError:
        return None


def get_current_user(request: Request) -> User:
    """Require a valid access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise AuthenticationError(PLEASE_AUTHENTICATE)
    return user
