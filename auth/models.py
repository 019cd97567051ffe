"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
service own the behavior; these classes own the domain shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    user = "user"
    admin = "admin"


class TokenType(str, Enum):
    """Kinds of signed tokens. Only ACCESS is stateless; the rest are persisted."""

    ACCESS = "access"
    REFRESH = "refresh"
    RESET_PASSWORD = "resetPassword"
    VERIFY_EMAIL = "verifyEmail"

    @property
    def persisted(self) -> bool:
        return self is not TokenType.ACCESS


@dataclass
class User:
    """An identity known to authcore.

    email is stored normalized (stripped, lower-case); UserStore does the
    normalization so callers may pass user input as-is.

    hashed_password is always set. Users created through Google sign-in get
    the hash of a random placeholder they never learn, so password login is
    impossible for them until they run the reset-password flow.

    google_id is None until the first Google sign-in links the account. Once
    set it never changes -- UserStore.link_google_id() only writes NULL rows.
    """

    email: str
    hashed_password: str
    name: str = ""
    role: str = Role.user.value
    id: int | None = None
    google_id: str | None = None
    is_email_verified: bool = False
    created_at: str | None = None


@dataclass
class Token:
    """A persisted refresh / reset-password / verify-email token record.

    token is the signed JWT string itself, so a record can only be found by
    presenting the exact value that was issued. blacklisted is reserved for
    explicit revocation; consumed tokens are deleted, not flagged.
    """

    token: str
    user_id: int
    type: TokenType
    expires: datetime
    blacklisted: bool = False
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires: datetime


@dataclass(frozen=True)
class AuthTokens:
    """An access/refresh pair returned by login, refresh, and OAuth sign-in."""

    access: IssuedToken
    refresh: IssuedToken


@dataclass(frozen=True)
class ExternalProfile:
    """The subset of a Google OIDC profile the identity linker needs.

    emails is ordered; the first entry is the primary address.
    """

    id: str
    display_name: str
    emails: list[str] = field(default_factory=list)

    @property
    def primary_email(self) -> str:
        return self.emails[0]
