"""Tagged results returned by the QuickBooks gateway."""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Failure categories surfaced to tools and the chat layer."""

    NOT_AUTHENTICATED = "not_authenticated"
    NOT_FOUND = "not_found"
    CUSTOMER_NOT_FOUND = "customer_not_found"
    VALIDATION_ERROR = "validation_error"
    UNSUPPORTED_OPERATION = "unsupported_operation"
    PROVIDER_ERROR = "provider_error"
    TIMEOUT = "timeout"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful gateway call."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed gateway call with a flat, human-readable message."""

    kind: ErrorKind
    message: str
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return False

    def to_payload(self) -> dict[str, str]:
        return {"error": self.message}


Result = Ok[T] | Err
