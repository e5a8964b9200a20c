"""Result types for best-effort operations that must never raise.

Uploads, notifications and cleanup steps report their outcome through these
wrappers so callers can log and continue without catching exceptions.
"""

from typing import TYPE_CHECKING, Any, Generic, TypeVar

from attrs import frozen
from beartype import beartype

T = TypeVar("T")
E = TypeVar("E")


@frozen
class Ok(Generic[T]):
    """Success result wrapper."""

    value: T

    @beartype
    def is_ok(self) -> bool:
        """Check if result is Ok."""
        return True

    @beartype
    def is_err(self) -> bool:
        """Check if result is Error."""
        return False

    @property
    def ok_value(self) -> T:
        """Get the Ok value."""
        return self.value

    @property
    def err_value(self) -> None:
        """Get the Error value (None for Ok)."""
        return None


@frozen
class Err(Generic[E]):
    """Error result wrapper."""

    error: E

    @beartype
    def is_ok(self) -> bool:
        """Check if result is Ok."""
        return False

    @beartype
    def is_err(self) -> bool:
        """Check if result is Error."""
        return True

    @property
    def ok_value(self) -> None:
        """Get the Ok value (None for Err)."""
        return None

    @property
    def err_value(self) -> E:
        """Get the Error value."""
        return self.error


if TYPE_CHECKING:
    Result = Ok[T] | Err[E]
else:

    class Result(Generic[T, E]):
        """Runtime stand-in so ``Result[T, E]`` works in annotations."""

        def __class_getitem__(cls, params: Any) -> Any:
            """Resolve ``Result[T, E]`` to ``Ok[Any] | Err[Any]``."""
            return Ok[Any] | Err[Any]
