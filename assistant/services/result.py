from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

T = TypeVar("T")


class ErrorCode(str, Enum):
    UNKNOWN = "unknown"
    UNSUPPORTED_PLATFORM = "unsupported_platform"
    PROCESSING_ERROR = "processing_error"
    INVALID_USERNAME = "invalid_username"
    USERNAME_TAKEN = "username_taken"
    NOT_FOUND = "not_found"
    DB_ERROR = "db_error"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a service call whose failure is an expected answer, not a crash."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None

    @staticmethod
    def success(value: T = None) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: Union[ErrorCode, str] = ErrorCode.UNKNOWN) -> "Result[T]":
        return Result(ok=False, error=error, error_code=ErrorCode(code))

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default
