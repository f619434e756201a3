from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Success/failure outcome for conditions the caller is expected to handle
    (wrong password, locked store, stale push) instead of an exception.

    ``error_type`` is one of the tags in :mod:`errors`.
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> "Result[T]":
        return cls(success=True, value=value)

    @classmethod
    def failure_result(
        cls,
        error: str,
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None,
    ) -> "Result[T]":
        return cls(
            success=False,
            error=error,
            error_type=error_type,
            error_details=error_details,
        )

    def __bool__(self) -> bool:
        return self.success
