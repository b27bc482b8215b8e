"""
Explicit success/failure values returned by external clients and stage handlers.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class FailureKind(str, Enum):
    # Worth retrying: timeouts, rate limits, 5xx, open circuit.
    TRANSIENT = "transient"
    # Bad input or a definite negative answer: retrying gives the same result.
    PERMANENT = "permanent"
    # The stage cannot continue; the job fails without further attempts.
    TERMINAL = "terminal"


@dataclass(frozen=True)
class CallResult(Generic[T]):
    value: T | None = None
    failure: FailureKind | None = None
    error: str | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> "CallResult[T]":
        return cls(value=value)

    @classmethod
    def transient(cls, error: str, *, detail: str | None = None) -> "CallResult[T]":
        return cls(failure=FailureKind.TRANSIENT, error=error, detail=detail)

    @classmethod
    def permanent(cls, error: str, *, detail: str | None = None) -> "CallResult[T]":
        return cls(failure=FailureKind.PERMANENT, error=error, detail=detail)

    @classmethod
    def terminal(cls, error: str, *, detail: str | None = None) -> "CallResult[T]":
        return cls(failure=FailureKind.TERMINAL, error=error, detail=detail)

    def unwrap(self) -> T:
        if self.failure is not None or self.value is None:
            raise ValueError(f"CallResult has no value: {self.failure} {self.error}")
        return self.value
