"""
auth/oauth.py -- Authlib Google OAuth configuration and profile extraction.

build_oauth() constructs the registry from Settings. It is called once by the
application lifespan and the result lives on app.state; nothing here is
registered at import time, so tests can build a registry from any Settings
object (or skip it entirely).

Security notes:
  Email verification is mandatory. profile_from_token() raises ValueError if
  Google does not confirm the address is verified. An unverified address
  could belong to someone other than the account holder, and the identity
  linker would otherwise attach that Google account to an existing user.

  OAuth state parameter (CSRF protection) is handled by authlib via Starlette
  SessionMiddleware. The session stores the state between the authorization
  redirect and the callback.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import ExternalProfile
from core.config import Settings

logger = logging.getLogger("authcore.auth.oauth")

GOOGLE = "google"


def build_oauth(settings: Settings) -> OAuth:
    """Return an OAuth registry with Google registered when credentials are configured."""
    oauth = OAuth()
    if settings.google_oauth_enabled:
        oauth.register(
            name=GOOGLE,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")
    else:
        logger.info("Google OAuth not configured -- /google routes will redirect to the failure URL")
    return oauth


def profile_from_token(token: dict) -> ExternalProfile:
    """Extract an ExternalProfile from the token dict authlib returns after code exchange.

    Google's id_token claims (parsed by authlib into token["userinfo"]) include
    sub, email, email_verified and name.

    Raises:
        ValueError: If userinfo is missing, the email is not verified, or the
            sub / email claims are absent.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")

    if userinfo.get("email_verified") is not True:
        raise ValueError("google OAuth: email is not verified")

    subject_id = userinfo.get("sub")
    email = userinfo.get("email")
    if not subject_id or not email:
        raise ValueError("google OAuth: missing email or sub claim in userinfo")

    return ExternalProfile(
        id=str(subject_id),
        display_name=userinfo.get("name") or email.split("@")[0],
        emails=[email],
    )
