"""
auth/credentials.py -- Email/password verification with timing equalization.

Always runs bcrypt whether or not the email exists. This prevents an attacker
from enumerating registered emails by measuring response time differences:
- Unknown email: bcrypt runs against DUMMY_HASH (same cost as a real check)
- Wrong password: bcrypt runs against the real hash (same cost)

Both failures raise the same AuthenticationError with the same message.
"""

from __future__ import annotations

from auth.errors import AuthenticationError
from auth.models import User
from auth.passwords import DUMMY_HASH, verify_password
from auth.store import UserStore

BAD_CREDENTIALS_MESSAGE = "Incorrect email or password"


class CredentialVerifier:
    def __init__(self, user_store: UserStore) -> None:
        self.user_store = user_store

    def verify(self, email: str, password: str) -> User:
        """Return the user whose email and password match, or raise AuthenticationError."""
        user = self.user_store.get_by_email(email)
        if user is None:
            # Equalize timing -- do NOT return early before running bcrypt
            verify_password(password, DUMMY_HASH)
            raise AuthenticationError(BAD_CREDENTIALS_MESSAGE)
        if not verify_password(password, user.hashed_password):
            raise AuthenticationError(BAD_CREDENTIALS_MESSAGE)
        return user
