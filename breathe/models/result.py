"""Uniform result type returned by collaborator-facing services."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(Enum):
    """Category of a failed collaborator call."""
    TIMEOUT = "timeout"
    AUTH = "auth"
    NOT_LOGGED_IN = "not_logged_in"
    NETWORK = "network"
    STORAGE = "storage"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or an error message with its kind."""
    value: Optional[T] = None
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.kind is None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str, kind: ErrorKind = ErrorKind.UNKNOWN) -> "Result":
        return cls(error=error, kind=kind)

    def get_or(self, default: T) -> T:
        return self.value if self.ok and self.value is not None else default
