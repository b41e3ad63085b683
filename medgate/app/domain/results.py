"""Result values returned by the guard and the scheduler.

Denials and scheduling conflicts are ordinary outcomes; they travel back to
the caller inside a ``Result`` instead of being raised.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")
E = TypeVar("E")


class AuthzErrorKind(str, Enum):
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"


class SchedulingErrorKind(str, Enum):
    INVALID_INTERVAL = "invalid_interval"
    PAST_INTERVAL = "past_interval"
    DOUBLE_BOOKED = "double_booked"
    INVALID_TRANSITION = "invalid_transition"
    NOT_FOUND = "not_found"


_AUTHZ_STATUS = {
    AuthzErrorKind.FORBIDDEN: 403,
    AuthzErrorKind.NOT_FOUND: 404,
}

_SCHEDULING_STATUS = {
    SchedulingErrorKind.INVALID_INTERVAL: 400,
    SchedulingErrorKind.PAST_INTERVAL: 400,
    SchedulingErrorKind.DOUBLE_BOOKED: 409,
    SchedulingErrorKind.INVALID_TRANSITION: 409,
    SchedulingErrorKind.NOT_FOUND: 404,
}


@dataclass(frozen=True)
class AuthzError:
    kind: AuthzErrorKind
    reason: str

    @property
    def status_code(self) -> int:
        return _AUTHZ_STATUS[self.kind]

    @classmethod
    def forbidden(cls, reason: str) -> "AuthzError":
        return cls(AuthzErrorKind.FORBIDDEN, reason)


@dataclass(frozen=True)
class SchedulingError:
    kind: SchedulingErrorKind
    message: str
    conflicting_id: Optional[str] = None

    @property
    def status_code(self) -> int:
        return _SCHEDULING_STATUS[self.kind]


class SchedulingTimeout(TimeoutError):
    """The doctor's booking lock could not be taken within the caller's timeout."""


@dataclass(frozen=True)
class Result(Generic[T, E]):
    value: Optional[T] = None
    error: Optional[E] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T, E]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: E) -> "Result[T, E]":
        return cls(error=error)
