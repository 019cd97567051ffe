"""
auth/results.py -- Discriminated outcome type for multi-step auth flows.

Flow steps (token check, user lookup, record consumption) return Ok(value) or
Failure(reason) instead of raising. The flow's top level inspects the outcome
and raises the one externally visible error for that flow, so the internal
reason is available for logging but never reaches the caller.

Usage:
    outcome = issuer.check(raw, TokenType.REFRESH)
    if isinstance(outcome, Failure):
        raise AuthenticationError("Please authenticate")
    verified = outcome.value
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    """A non-success step result. reason is for logs only."""

    reason: str


Outcome = Union[Ok[T], Failure]
