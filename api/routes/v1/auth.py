"""
api/routes/v1/auth.py -- Authentication and token lifecycle REST endpoints.

Routes:
  POST /v1/auth/register                 -- create account; 201 {user, tokens}
  POST /v1/auth/login                    -- password login; 200 {user, tokens}
  POST /v1/auth/logout                   -- consume refresh token; 204
  POST /v1/auth/refresh-tokens           -- rotate refresh token; 200 {access, refresh}
  POST /v1/auth/forgot-password          -- email a reset link; 204
  POST /v1/auth/reset-password?token=    -- set new password; 204
  POST /v1/auth/send-verification-email  -- email a verification link (requires auth); 204
  POST /v1/auth/verify-email?token=      -- mark email verified; 204
  GET  /v1/auth/me                       -- current user (requires auth)
  GET  /v1/auth/google                   -- redirect to Google
  GET  /v1/auth/google/callback          -- Google callback; 200 {user, tokens}

Handlers that hash passwords or touch the database are plain `def` so FastAPI
runs them in its threadpool and bcrypt never blocks the event loop. The Google
routes are async because authlib's client is; the blocking part of the
callback goes through run_in_threadpool().

Errors: AuthService raises AuthError subclasses; api/main.py renders them.
Routes never build error bodies themselves, except the OAuth failure redirect.

Security:
  Credential-bearing routes are rate-limited per client IP (AUTH_RATE_LIMIT).
  Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import (
    AuthResponse,
    AuthTokensResponse,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
)
from auth.dependencies import get_auth_service, get_current_user
from auth.models import User
from auth.oauth import GOOGLE, profile_from_token
from auth.service import AuthService
from core.config import get_settings

logger = logging.getLogger("authcore.api.auth")

_AUTH_LIMIT = get_settings().auth_rate_limit

# Auth policy:
# - POST /auth/send-verification-email: requires a valid access token (get_current_user)
# - GET  /auth/me:                      requires a valid access token (get_current_user)
# - everything else:                    public -- the token or credential in the request is the proof
router = APIRouter()


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"


# ---------------------------------------------------------------------------
# Registration and password login
# ---------------------------------------------------------------------------


@limiter.limit(_AUTH_LIMIT)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    request: Request,
    response: Response,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Create a local account and sign it in. 409 if the email is already registered."""
    user, tokens = service.register(body.email, body.password, body.name)
    _no_store(response)
    return AuthResponse.build(user, tokens)


@limiter.limit(_AUTH_LIMIT)
@router.post("/auth/login", response_model=AuthResponse)
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Authenticate with email and password.

    Unknown email and wrong password return the same 401 body, and take the
    same time, so the endpoint does not reveal which emails are registered.
    """
    user, tokens = service.login(body.email, body.password)
    _no_store(response)
    return AuthResponse.build(user, tokens)


@router.post("/auth/logout", status_code=204)
def logout(body: RefreshTokenRequest, service: AuthService = Depends(get_auth_service)) -> Response:
    """Revoke a refresh token. 404 if it is unknown or already used."""
    service.logout(body.refresh_token)
    return Response(status_code=204)


@limiter.limit(_AUTH_LIMIT)
@router.post("/auth/refresh-tokens", response_model=AuthTokensResponse)
def refresh_tokens(
    request: Request,
    response: Response,
    body: RefreshTokenRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthTokensResponse:
    """Exchange a refresh token for a new pair. The presented token stops working."""
    tokens = service.refresh_auth(body.refresh_token)
    _no_store(response)
    return AuthTokensResponse.from_tokens(tokens)


# ---------------------------------------------------------------------------
# Password reset and email verification
# ---------------------------------------------------------------------------


@limiter.limit(_AUTH_LIMIT)
@router.post("/auth/forgot-password", status_code=204)
def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> Response:
    """Always 204, whether or not the email is registered."""
    service.forgot_password(body.email)
    return Response(status_code=204)


@limiter.limit(_AUTH_LIMIT)
@router.post("/auth/reset-password", status_code=204)
def reset_password(
    request: Request,
    token: str,
    body: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> Response:
    service.reset_password(token, body.password)
    return Response(status_code=204)


@router.post("/auth/send-verification-email", status_code=204)
def send_verification_email(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> Response:
    service.send_verification_email(current_user)
    return Response(status_code=204)


@router.post("/auth/verify-email", status_code=204)
def verify_email(token: str, service: AuthService = Depends(get_auth_service)) -> Response:
    service.verify_email(token)
    return Response(status_code=204)


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the user the bearer access token was issued to."""
    return UserResponse.from_user(current_user)


# ---------------------------------------------------------------------------
# Google sign-in
# ---------------------------------------------------------------------------


def _oauth_failed() -> RedirectResponse:
    return RedirectResponse(get_settings().oauth_failure_redirect, status_code=302)


@router.get("/auth/google")
async def google_login(request: Request) -> RedirectResponse:
    """Redirect the browser to Google's consent page."""
    client = request.app.state.oauth.create_client(GOOGLE)
    if client is None:
        return _oauth_failed()
    redirect_uri = str(request.url_for("google_callback"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/google/callback", response_model=AuthResponse, name="google_callback")
async def google_callback(
    request: Request,
    response: Response,
    service: AuthService = Depends(get_auth_service),
):
    """Handle Google's redirect back and sign the user in.

    Flow:
      1. Exchange the authorization code (authlib verifies the session state).
      2. Extract a verified profile -- unverified emails are rejected.
      3. Resolve the profile to a local user (link or create) and issue tokens.

    Steps 1 and 2 fail with a redirect to OAUTH_FAILURE_REDIRECT. Step 3
    failures surface as 409 (email linked to another Google account) or
    500 "Google authentication failed".
    """
    client = request.app.state.oauth.create_client(GOOGLE)
    if client is None:
        return _oauth_failed()

    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("Google token exchange failed")
        return _oauth_failed()

    try:
        profile = profile_from_token(token)
    except ValueError as exc:
        logger.warning("Google sign-in rejected: %s", exc)
        return _oauth_failed()

    user, tokens = await run_in_threadpool(service.oauth_login, profile)
    _no_store(response)
    return AuthResponse.build(user, tokens)
