"""procspine Core -- ambient primitives shared by the execution layer.

Architecture::

    errors.py      Structured error hierarchy (ProcSpineError, ExecutionFailedError)
    result.py      Result[T] envelope (Ok / Err) for inspectable outcomes
    logging.py     structlog configuration + get_logger
    settings.py    pydantic-settings configuration (PROCSPINE_*)
"""

from procspine.core.errors import (
    NOT_CAPTURED,
    ConfigError,
    ErrorCategory,
    ErrorContext,
    ExecutableNotFoundError,
    ExecutionFailedError,
    ExecutionTimeoutError,
    InvalidArgumentError,
    InvalidOutputSpecError,
    InvalidPolicyError,
    ProcSpineError,
    RequiredExecutableNotFoundError,
    SpawnError,
    is_retryable,
)
from procspine.core.result import Err, Ok, Result

__all__ = [
    "NOT_CAPTURED",
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "ExecutableNotFoundError",
    "ExecutionFailedError",
    "ExecutionTimeoutError",
    "InvalidArgumentError",
    "InvalidOutputSpecError",
    "InvalidPolicyError",
    "ProcSpineError",
    "RequiredExecutableNotFoundError",
    "SpawnError",
    "is_retryable",
    "Ok",
    "Err",
    "Result",
]
