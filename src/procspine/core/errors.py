"""
Structured error types for procspine.

Every failure that crosses the procspine boundary is a typed error carrying
enough context to reproduce the failing invocation without re-running it:
the program, the full argument list, the exit code, and whatever standard
output was captured.

Manifesto:
    - **Typed Error Hierarchy:** Not-found, execution failure, translated
      failure and configuration error are distinct types
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry program/arguments/exit code for logging
    - **Error Chaining:** Preserve original exceptions as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       ProcSpineError                             │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ExecutableNotFoundError     ExecutionFailedError   ConfigError  │
        │  (NOT_FOUND, warning value)  (EXECUTION)            (CONFIG)     │
        │       │                          │                     │         │
        │  RequiredExecutable          <translated kinds>   InvalidOutput  │
        │  NotFoundError               ExecutionTimeoutError InvalidArg    │
        │                                                    InvalidPolicy │
        │  SpawnError (SPAWN)                                              │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    Declaring a translated failure kind:

    >>> class MergeConflict(ExecutionFailedError):
    ...     pass
    >>> err = MergeConflict(program="/usr/bin/git", arguments=("merge",),
    ...                     exit_code=1, branch="main")
    >>> err.extra["branch"]
    'main'

Tags:
    error-handling, exception-hierarchy, exit-codes, procspine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class _NotCaptured:
    """Marker for output that was not captured by the invocation."""

    _instance: _NotCaptured | None = None

    def __new__(cls) -> _NotCaptured:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_CAPTURED"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "NOT_CAPTURED"


NOT_CAPTURED = _NotCaptured()


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Attributes:
        NOT_FOUND: Executable could not be located
        SPAWN: The platform refused to start the process
        EXECUTION: The process ran and exited outside the valid table
        TIMEOUT: A bounded wait elapsed
        CONFIG: Invalid output spec, argument or policy
        INTERNAL: Bugs, unexpected state
    """

    NOT_FOUND = "NOT_FOUND"
    SPAWN = "SPAWN"
    EXECUTION = "EXECUTION"
    TIMEOUT = "TIMEOUT"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to errors.

    Only non-None fields are serialized by ``to_dict()``; anything that does
    not have a dedicated field goes into ``metadata``.

    Attributes:
        program: Resolved path (or bare name) of the program
        arguments: Flattened argument tokens
        exit_code: Exit status of the child, if it ran
        host: Remote host, for remote invocations
        invocation: Name of a catalogued invocation
        metadata: Additional key-value pairs
    """

    program: str | None = None
    arguments: tuple[str, ...] | None = None
    exit_code: int | None = None
    host: str | None = None
    invocation: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ["program", "arguments", "exit_code", "host", "invocation"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = list(value) if key == "arguments" else value
        if self.metadata:
            result.update(self.metadata)
        return result


class ProcSpineError(Exception):
    """
    Base exception for all procspine errors.

    All instances carry a ``category``, a ``retryable`` flag, an
    :class:`ErrorContext` and an optional chained ``cause``. Subclasses set
    ``default_category`` and ``default_retryable``.

    Examples:
        >>> error = ProcSpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(program="/bin/ls").context.program
        '/bin/ls'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ProcSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise SpawnError("cannot exec").with_context(host="build-01")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# NOT FOUND
# =============================================================================


class ExecutableNotFoundError(ProcSpineError):
    """
    A named executable could not be located on the search path.

    This is a warning-level condition: the registry returns it inside an
    ``Err`` rather than raising it, so callers may choose to proceed.
    """

    default_category = ErrorCategory.NOT_FOUND

    def __init__(self, name: str, search_path: Sequence[str], **kwargs: Any):
        self.name = name
        self.search_path = tuple(str(p) for p in search_path)
        super().__init__(
            f"Executable {name!r} not found in {list(self.search_path)}",
            **kwargs,
        )
        self.context.program = name
        self.context.metadata.setdefault("search_path", list(self.search_path))


class RequiredExecutableNotFoundError(ExecutableNotFoundError):
    """A caller demanded an executable that is not on the search path."""

    @classmethod
    def from_warning(cls, warning: ExecutableNotFoundError) -> RequiredExecutableNotFoundError:
        return cls(warning.name, warning.search_path, cause=warning)


# =============================================================================
# EXECUTION FAILURES
# =============================================================================


class ExecutionFailedError(ProcSpineError):
    """
    The program ran and exited with a code outside the valid-exit-code table.

    This is the generic failure. Translated failures are subclasses declared
    by callers and selected through the error-translation table; any extra
    keyword fields given to the constructor end up in ``extra`` and in the
    error context metadata.

    Attributes:
        program: Resolved path (or name) of the program
        arguments: Flattened argument tokens
        exit_code: Exit status of the child
        captured_output: Captured standard output, or ``NOT_CAPTURED``
        extra: Caller-declared fields of a translated failure
    """

    default_category = ErrorCategory.EXECUTION

    def __init__(
        self,
        message: str | None = None,
        *,
        program: str,
        arguments: Sequence[str] = (),
        exit_code: int | None = None,
        captured_output: str | _NotCaptured = NOT_CAPTURED,
        retryable: bool | None = None,
        cause: Exception | None = None,
        **extra: Any,
    ):
        self.program = str(program)
        self.arguments = tuple(arguments)
        self.exit_code = exit_code
        self.captured_output = captured_output
        self.extra = dict(extra)
        if message is None:
            message = f"{self.program} exited with status {exit_code}"
        super().__init__(
            message,
            retryable=retryable,
            cause=cause,
            context=ErrorContext(
                program=self.program,
                arguments=self.arguments,
                exit_code=exit_code,
                metadata=dict(extra),
            ),
        )

    @property
    def captured(self) -> bool:
        return self.captured_output is not NOT_CAPTURED

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.captured:
            result["captured_output"] = self.captured_output
        return result


class ExecutionTimeoutError(ExecutionFailedError):
    """A bounded wait elapsed before the child exited; the child was killed."""

    default_category = ErrorCategory.TIMEOUT
    default_retryable = True


class SpawnError(ProcSpineError):
    """The platform spawn primitive could not start the program."""

    default_category = ErrorCategory.SPAWN

    def __init__(self, program: str, arguments: Sequence[str], cause: Exception):
        self.program = str(program)
        self.arguments = tuple(arguments)
        super().__init__(
            f"Cannot start {self.program}: {cause}",
            cause=cause,
            context=ErrorContext(program=self.program, arguments=self.arguments),
        )


# =============================================================================
# CONFIGURATION ERRORS (never retryable, raised synchronously)
# =============================================================================


class ConfigError(ProcSpineError):
    """Invalid configuration, raised before any process is spawned."""

    default_category = ErrorCategory.CONFIG


class InvalidOutputSpecError(ConfigError):
    """The output sink specification is not one of the accepted forms."""


class InvalidArgumentError(ConfigError):
    """An argument value has no declared coercion to a string token."""


class InvalidPolicyError(ConfigError):
    """An exit-code or error-translation table is malformed."""


# =============================================================================
# HELPERS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, ProcSpineError):
        return error.retryable
    return False


__all__ = [
    "NOT_CAPTURED",
    "ErrorCategory",
    "ErrorContext",
    "ProcSpineError",
    "ExecutableNotFoundError",
    "RequiredExecutableNotFoundError",
    "ExecutionFailedError",
    "ExecutionTimeoutError",
    "SpawnError",
    "ConfigError",
    "InvalidOutputSpecError",
    "InvalidArgumentError",
    "InvalidPolicyError",
    "is_retryable",
]
