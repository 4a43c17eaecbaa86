"""procspine -- run external programs as typed, policy-driven operations.

Name a program, hand over arguments, get back a ``Success`` or a typed
``ExecutionFailedError``. Options such as dry-run, capture, environment and
exit-code tables come from a dynamically scoped policy context.

Example::

    import procspine

    with procspine.output_to():
        head = procspine.execute("git", ["rev-parse", "HEAD"]).captured_output
"""

from procspine.core.errors import (
    NOT_CAPTURED,
    ConfigError,
    ExecutableNotFoundError,
    ExecutionFailedError,
    ExecutionTimeoutError,
    ProcSpineError,
    RequiredExecutableNotFoundError,
    SpawnError,
)
from procspine.execution import (
    CommandDescriptor,
    Dispatcher,
    ExecutableRegistry,
    ExecutionPolicy,
    Failure,
    ProcessHandle,
    Success,
    asynchronous,
    dry_run,
    environment,
    error_translations,
    execute,
    exit_codes,
    explain,
    explanatory,
    input_from,
    output_to,
    run_remote,
    verbose,
    watch_remote,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "NOT_CAPTURED",
    "ProcSpineError",
    "ConfigError",
    "ExecutableNotFoundError",
    "RequiredExecutableNotFoundError",
    "ExecutionFailedError",
    "ExecutionTimeoutError",
    "SpawnError",
    "CommandDescriptor",
    "Dispatcher",
    "ExecutableRegistry",
    "ExecutionPolicy",
    "ProcessHandle",
    "Success",
    "Failure",
    "execute",
    "dry_run",
    "verbose",
    "explanatory",
    "output_to",
    "input_from",
    "environment",
    "asynchronous",
    "explain",
    "exit_codes",
    "error_translations",
    "run_remote",
    "watch_remote",
]
