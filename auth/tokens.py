"""
auth/tokens.py -- Signed token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Every token carries sub (user id), type, iat,
       exp, and a random jti. jti keeps two tokens minted for the same user in
       the same second distinct, which the UNIQUE(token) column relies on.

  Access tokens are stateless: verification is signature + expiry + type
       claim only, with no database round-trip. Refresh, reset-password and
       verify-email tokens are also persisted; presenting one requires a live
       (not consumed, not blacklisted) record whose subject matches the claim.

  Verification has two faces. check() returns an Outcome so multi-step flows
       can decide what the caller sees. verify() raises AuthenticationError and
       is meant for single-step callers such as the bearer-token dependency.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import AuthenticationError
from auth.models import AuthTokens, IssuedToken, Token, TokenType, User
from auth.results import Failure, Ok, Outcome
from auth.store import TokenStore
from core.config import Settings

logger = logging.getLogger("authcore.auth.tokens")

_ALGORITHM = "HS256"


@dataclass(frozen=True)
class VerifiedToken:
    """A token whose signature, expiry and type checked out.

    record is None for access tokens, which are never persisted.
    """

    subject_id: int
    type: TokenType
    record: Token | None = None


class TokenIssuer:
    """Mints and verifies signed tokens, persisting the revocable kinds.

    Usage:
        issuer = TokenIssuer(settings, token_store)
        tokens = issuer.issue_auth_tokens(user)
        verified = issuer.verify(tokens.access.token, TokenType.ACCESS)
    """

    def __init__(self, settings: Settings, token_store: TokenStore) -> None:
        self._secret = settings.secret_key
        self._settings = settings
        self.token_store = token_store

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def generate_token(self, user_id: int, expires: datetime, token_type: TokenType) -> str:
        payload = {
            "sub": str(user_id),
            "type": token_type.value,
            "iat": datetime.now(timezone.utc),
            "exp": expires,
            "jti": secrets.token_urlsafe(12),
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def decode(self, token: str) -> dict | None:
        """Decode and verify signature + expiry. Returns the payload or None on any failure."""
        try:
            return jwt.decode(token, self._secret, algorithms=[_ALGORITHM])
        except JWTError:
            return None

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue_auth_tokens(self, user: User) -> AuthTokens:
        """Mint an access/refresh pair and persist the refresh record."""
        now = datetime.now(timezone.utc)
        access_expires = now + timedelta(minutes=self._settings.access_token_expire_minutes)
        refresh_expires = now + timedelta(days=self._settings.refresh_token_expire_days)

        access = self.generate_token(user.id, access_expires, TokenType.ACCESS)
        refresh = self.generate_token(user.id, refresh_expires, TokenType.REFRESH)
        self.token_store.save(Token(token=refresh, user_id=user.id, type=TokenType.REFRESH, expires=refresh_expires))

        return AuthTokens(
            access=IssuedToken(token=access, expires=access_expires),
            refresh=IssuedToken(token=refresh, expires=refresh_expires),
        )

    def issue_single_use_token(self, user: User, token_type: TokenType, ttl: timedelta) -> str:
        """Mint and persist a reset-password or verify-email token."""
        if token_type not in (TokenType.RESET_PASSWORD, TokenType.VERIFY_EMAIL):
            raise ValueError(f"{token_type.value!r} is not a single-use token type")
        expires = datetime.now(timezone.utc) + ttl
        token = self.generate_token(user.id, expires, token_type)
        self.token_store.save(Token(token=token, user_id=user.id, type=token_type, expires=expires))
        return token

    def issue_reset_password_token(self, user: User) -> str:
        ttl = timedelta(minutes=self._settings.reset_password_expire_minutes)
        return self.issue_single_use_token(user, TokenType.RESET_PASSWORD, ttl)

    def issue_verify_email_token(self, user: User) -> str:
        ttl = timedelta(minutes=self._settings.verify_email_expire_minutes)
        return self.issue_single_use_token(user, TokenType.VERIFY_EMAIL, ttl)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def check(self, token: str, expected_type: TokenType) -> Outcome[VerifiedToken]:
        """Verify a presented token without raising.

        Failure reasons: bad_signature_or_expired, wrong_type, malformed_subject,
        record_missing. The reason is for logs only.
        """
        payload = self.decode(token)
        if payload is None:
            return Failure("bad_signature_or_expired")
        if payload.get("type") != expected_type.value:
            return Failure("wrong_type")
        try:
            subject_id = int(payload["sub"])
        except (KeyError, TypeError, ValueError):
            return Failure("malformed_subject")

        if not expected_type.persisted:
            return Ok(VerifiedToken(subject_id=subject_id, type=expected_type))

        record = self.token_store.find(token, expected_type, user_id=subject_id)
        if record is None:
            return Failure("record_missing")
        return Ok(VerifiedToken(subject_id=subject_id, type=expected_type, record=record))

    def verify(self, token: str, expected_type: TokenType) -> VerifiedToken:
        """Like check(), but raises AuthenticationError on any failure."""
        outcome = self.check(token, expected_type)
        if isinstance(outcome, Failure):
            logger.info("Rejected %s token: %s", expected_type.value, outcome.reason)
            raise AuthenticationError("Please authenticate")
        return outcome.value
