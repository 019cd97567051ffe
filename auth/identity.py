"""
auth/identity.py -- Resolve a Google identity to a local user.

Decision order for resolve(profile):
  1. A user already linked to this Google id -> returned unchanged. Repeated
     sign-ins are idempotent and never create a second account.
  2. A user registered with the profile's primary email:
       - not linked yet   -> link the Google id, mark the email verified.
       - linked to a different Google id -> ConflictError. Accepting would
         let whoever controls a second Google account with the same address
         sign in as the existing user.
  3. Nobody matches -> create a verified user whose password is the hash of a
     random placeholder, so the account cannot be entered by password until
     the owner runs the reset-password flow.

Storage errors and malformed profiles are reported as a single InternalError
so an OAuth callback never exposes internal state. ConflictError is a
deliberate decision and passes through unchanged.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import ConflictError, InternalError
from auth.models import ExternalProfile, Role, User
from auth.passwords import random_password_hash
from auth.store import UserStore

logger = logging.getLogger("authcore.auth.identity")

GOOGLE_AUTH_FAILED_MESSAGE = "Google authentication failed"


class IdentityLinker:
    def __init__(self, user_store: UserStore) -> None:
        self.user_store = user_store

    def resolve(self, profile: ExternalProfile) -> User:
        try:
            return self._resolve(profile)
        except ConflictError:
            raise
        except (SQLAlchemyError, LookupError, TypeError, AttributeError) as exc:
            logger.exception("Google identity resolution failed for subject %r", getattr(profile, "id", None))
            raise InternalError(GOOGLE_AUTH_FAILED_MESSAGE) from exc

    def _resolve(self, profile: ExternalProfile) -> User:
        if not profile.id or not profile.emails:
            raise LookupError("profile has no subject id or email")

        user = self.user_store.get_by_google_id(profile.id)
        if user is not None:
            return user

        email = profile.primary_email
        existing = self.user_store.get_by_email(email)
        if existing is not None:
            return self._link_existing(existing, profile.id)

        try:
            user_id = self.user_store.create_user(
                User(
                    email=email,
                    name=profile.display_name,
                    hashed_password=random_password_hash(),
                    role=Role.user.value,
                    google_id=profile.id,
                    is_email_verified=True,
                )
            )
        except ConflictError:
            # A concurrent request created the account between our reads and the insert.
            user = self.user_store.get_by_google_id(profile.id)
            if user is not None:
                return user
            existing = self.user_store.get_by_email(email)
            if existing is None:
                raise
            return self._link_existing(existing, profile.id)
        logger.info("Created user %d from Google sign-in", user_id)
        return self.user_store.get_by_id(user_id)

    def _link_existing(self, existing: User, google_id: str) -> User:
        """Link an account found by email, or accept it if already linked to this Google id."""
        if existing.google_id is None:
            if not self.user_store.link_google_id(existing.id, google_id):
                # Linked by a concurrent sign-in between our read and write.
                return self._resolve_linked(existing.id, google_id)
            logger.info("Linked Google identity to existing user %d", existing.id)
            return self.user_store.get_by_id(existing.id)
        return self._resolve_linked(existing.id, google_id)

    def _resolve_linked(self, user_id: int, google_id: str) -> User:
        """Return the user if it is linked to this Google id, otherwise refuse."""
        user = self.user_store.get_by_id(user_id)
        if user is None or user.google_id != google_id:
            logger.warning("Google sign-in refused: email of user %d is linked to another Google account", user_id)
            raise ConflictError("Email is linked to a different Google account")
        return user
