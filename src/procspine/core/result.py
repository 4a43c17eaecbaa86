"""
Result envelope for outcomes callers are expected to inspect.

Some conditions are not failures of the caller's program but facts it may
want to act on, the prime example being "executable not found": a build
script may fall back to another tool, or proceed with a bare name. Such
operations return ``Ok[T]`` or ``Err[T]`` instead of raising, so the choice
stays explicit at the call site.

Examples:
    >>> from procspine.execution.registry import ExecutableRegistry
    >>> match ExecutableRegistry().lookup("git"):
    ...     case Ok(path):
    ...         print(path)
    ...     case Err(error):
    ...         print(error.search_path)

Tags:
    result-pattern, error-handling, procspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """Failed result carrying the error that would otherwise have been raised."""

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the carried error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Ok[T] | Err[T]


__all__ = ["Ok", "Err", "Result"]
