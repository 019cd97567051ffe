"""
auth/errors.py -- Typed error taxonomy for the authentication core.

Every error carries the HTTP status and machine-readable code the API layer
renders, so route handlers never translate errors by hand. api/main.py
registers a single exception handler for AuthError that builds the
ErrorResponse envelope from these attributes.

Messages raised at the flow boundary (AuthService) are fixed strings chosen
per flow. They must not be made more specific: "Please authenticate" is
returned whether the refresh token was forged, expired, already used, or
belonged to a deleted user.
"""

from __future__ import annotations

from typing import Any


class AuthError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, detail: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(AuthError):
    """Caller's input contract violated. detail holds the field errors."""

    status_code = 422
    code = "validation_error"


class AuthenticationError(AuthError):
    status_code = 401
    code = "unauthorized"


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"


class InternalError(AuthError):
    status_code = 500
    code = "internal_error"
