"""
auth/service.py -- AuthService: the authentication and token lifecycle flows.

Flows:
  register                 -- create user, issue access/refresh pair
  login                    -- verify credentials, issue pair
  logout                   -- consume the refresh record
  refresh_auth             -- rotate: consume the presented refresh record, issue a new pair
  forgot_password          -- issue a reset token and email it
  reset_password           -- consume every reset token of the user, set the new password
  send_verification_email  -- issue a verify-email token and email it
  verify_email             -- consume every verify-email token of the user, set the flag
  oauth_login              -- resolve a Google profile to a user, issue pair

Information hiding:
  refresh_auth, reset_password and verify_email are built from steps that
  return an Outcome. The flow's top level turns any Failure into one fixed
  AuthenticationError per flow and logs the internal reason. A caller cannot
  tell a forged token from an expired, reused or orphaned one.

Threading:
  All methods are synchronous and block on bcrypt and the database. FastAPI
  runs sync route handlers in its threadpool; async callers must go through
  run_in_threadpool().

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from auth import mailer
from auth.credentials import CredentialVerifier
from auth.errors import AuthenticationError, InternalError, NotFoundError
from auth.identity import GOOGLE_AUTH_FAILED_MESSAGE, IdentityLinker
from auth.mailer import EmailSender
from auth.models import AuthTokens, ExternalProfile, TokenType, User
from auth.passwords import hash_password
from auth.results import Failure, Ok, Outcome
from auth.store import TokenStore, UserStore
from auth.tokens import TokenIssuer
from core.config import Settings

logger = logging.getLogger("authcore.auth.service")

PLEASE_AUTHENTICATE = "Please authenticate"
PASSWORD_RESET_FAILED = "Password reset failed"
EMAIL_VERIFICATION_FAILED = "Email verification failed"


class AuthService:
    """Orchestrates credential checks, token issuance and identity linking.

    Every collaborator is passed in; nothing is looked up from module state.
    api/main.py builds one instance in the lifespan and stores it on app.state.
    """

    def __init__(
        self,
        settings: Settings,
        user_store: UserStore,
        token_store: TokenStore,
        issuer: TokenIssuer,
        credentials: CredentialVerifier,
        identity_linker: IdentityLinker,
        email_sender: EmailSender,
    ) -> None:
        self.settings = settings
        self.user_store = user_store
        self.token_store = token_store
        self.issuer = issuer
        self.credentials = credentials
        self.identity_linker = identity_linker
        self.email_sender = email_sender

    @classmethod
    def from_stores(
        cls,
        settings: Settings,
        user_store: UserStore,
        token_store: TokenStore,
        email_sender: EmailSender,
    ) -> AuthService:
        """Wire the default collaborators around a pair of stores."""
        return cls(
            settings=settings,
            user_store=user_store,
            token_store=token_store,
            issuer=TokenIssuer(settings, token_store),
            credentials=CredentialVerifier(user_store),
            identity_linker=IdentityLinker(user_store),
            email_sender=email_sender,
        )

    # ------------------------------------------------------------------
    # Registration and password login
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, name: str = "") -> tuple[User, AuthTokens]:
        """Create a local account. Raises ConflictError if the email is taken."""
        user_id = self.user_store.create_user(User(email=email, name=name, hashed_password=hash_password(password)))
        user = self.user_store.get_by_id(user_id)
        logger.info("Registered user %d", user_id)
        return user, self.issuer.issue_auth_tokens(user)

    def login(self, email: str, password: str) -> tuple[User, AuthTokens]:
        user = self.credentials.verify(email, password)
        logger.info("User %d logged in", user.id)
        return user, self.issuer.issue_auth_tokens(user)

    def logout(self, refresh_token: str) -> None:
        if self.token_store.find_and_delete(refresh_token, TokenType.REFRESH) is None:
            raise NotFoundError("Not found")

    # ------------------------------------------------------------------
    # Refresh rotation
    # ------------------------------------------------------------------

    def refresh_auth(self, refresh_token: str) -> AuthTokens:
        outcome = self._guarded("refresh", self._rotate_refresh, refresh_token)
        return self._collapse("refresh", outcome, PLEASE_AUTHENTICATE)

    def _rotate_refresh(self, refresh_token: str) -> Outcome[AuthTokens]:
        verified = self.issuer.check(refresh_token, TokenType.REFRESH)
        if isinstance(verified, Failure):
            return verified
        user = self.user_store.get_by_id(verified.value.subject_id)
        if user is None:
            return Failure("user_missing")
        # The record must be gone before the new pair exists. Losing this
        # race means another request already rotated the same token.
        if not self.token_store.consume(verified.value.record):
            return Failure("already_consumed")
        return Ok(self.issuer.issue_auth_tokens(user))

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        """Email a reset link if the address is registered.

        Unknown addresses are a silent no-op so the endpoint cannot be used to
        probe which emails have accounts.
        """
        user = self.user_store.get_by_email(email)
        if user is None:
            logger.info("Password reset requested for an unknown email")
            return
        token = self.issuer.issue_reset_password_token(user)
        mailer.send_reset_password_email(self.email_sender, user.email, token, self.settings.app_base_url)

    def reset_password(self, reset_token: str, new_password: str) -> None:
        outcome = self._guarded("reset_password", self._reset_password, reset_token, new_password)
        self._collapse("reset_password", outcome, PASSWORD_RESET_FAILED)

    def _reset_password(self, reset_token: str, new_password: str) -> Outcome[None]:
        verified = self.issuer.check(reset_token, TokenType.RESET_PASSWORD)
        if isinstance(verified, Failure):
            return verified
        user = self.user_store.get_by_id(verified.value.subject_id)
        if user is None:
            return Failure("user_missing")
        if not self.user_store.update_password(user.id, hash_password(new_password)):
            return Failure("user_missing")
        removed = self.token_store.delete_all_for_user(user.id, TokenType.RESET_PASSWORD)
        logger.info("Password reset for user %d (%d reset tokens consumed)", user.id, removed)
        return Ok(None)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def send_verification_email(self, user: User) -> None:
        token = self.issuer.issue_verify_email_token(user)
        mailer.send_verification_email(self.email_sender, user.email, token, self.settings.app_base_url)

    def verify_email(self, verify_token: str) -> None:
        outcome = self._guarded("verify_email", self._verify_email, verify_token)
        self._collapse("verify_email", outcome, EMAIL_VERIFICATION_FAILED)

    def _verify_email(self, verify_token: str) -> Outcome[None]:
        verified = self.issuer.check(verify_token, TokenType.VERIFY_EMAIL)
        if isinstance(verified, Failure):
            return verified
        user = self.user_store.get_by_id(verified.value.subject_id)
        if user is None:
            return Failure("user_missing")
        try:
            self.token_store.delete_all_for_user(user.id, TokenType.VERIFY_EMAIL)
        except SQLAlchemyError:
            # The presented token is proven valid; still mark the address verified.
            logger.exception("Could not delete verify-email tokens for user %d", user.id)
        if not self.user_store.set_email_verified(user.id, True):
            return Failure("user_missing")
        logger.info("Email verified for user %d", user.id)
        return Ok(None)

    # ------------------------------------------------------------------
    # Google sign-in
    # ------------------------------------------------------------------

    def oauth_login(self, profile: ExternalProfile) -> tuple[User, AuthTokens]:
        """Resolve a verified Google profile to a user and issue a token pair.

        Raises ConflictError when the email belongs to a user linked to a
        different Google account, InternalError on any storage failure.
        """
        user = self.identity_linker.resolve(profile)
        try:
            tokens = self.issuer.issue_auth_tokens(user)
        except SQLAlchemyError as exc:
            logger.exception("Token issuance failed after Google sign-in for user %d", user.id)
            raise InternalError(GOOGLE_AUTH_FAILED_MESSAGE) from exc
        logger.info("User %d signed in with Google", user.id)
        return user, tokens

    # ------------------------------------------------------------------
    # Access tokens and maintenance
    # ------------------------------------------------------------------

    def user_for_access_token(self, access_token: str) -> User:
        """Return the user an access token was issued to. Stateless except for the user lookup."""
        verified = self.issuer.verify(access_token, TokenType.ACCESS)
        user = self.user_store.get_by_id(verified.subject_id)
        if user is None:
            raise AuthenticationError(PLEASE_AUTHENTICATE)
        return user

    def purge_expired_tokens(self) -> int:
        removed = self.token_store.purge_expired()
        if removed:
            logger.info("Purged %d expired token records", removed)
        return removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _guarded(flow: str, step: Callable[..., Outcome], *args) -> Outcome:
        """Run a flow body, reporting storage exceptions as a Failure outcome."""
        try:
            return step(*args)
        except SQLAlchemyError:
            logger.exception("%s: storage error", flow)
            return Failure("storage_error")

    @staticmethod
    def _collapse(flow: str, outcome: Outcome, message: str):
        """Map a Failure to the flow's single public AuthenticationError."""
        if isinstance(outcome, Failure):
            logger.info("%s rejected: %s", flow, outcome.reason)
            raise AuthenticationError(message)
        return outcome.value
