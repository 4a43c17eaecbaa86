"""procspine Execution -- run external programs under an explicit policy.

Architecture::

    arguments.py   flatten_arguments: caller values → argv tokens
    registry.py    ExecutableRegistry: name → path, cached
    sinks.py       OutputSink / InputSource: where stdout goes, where stdin comes from
    policy.py      ExecutionPolicy + dynamically scoped context (dry_run, verbose, ...)
    outcome.py     Success / Failure + exit-code mapping
    spawner.py     Spawner protocol, SubprocessSpawner, ProcessHandle
    dispatcher.py  Dispatcher.execute: the one entry point
    retry.py       Backoff strategies
    recovery.py    Invocation, InvocationCatalog, recovery policies
    remote.py      RemoteFront: run_remote / watch_remote over a transport

Quick start::

    from procspine.execution import execute, output_to, dry_run

    with output_to():
        listing = execute("ls", ["-la", "/srv"]).captured_output

    with dry_run():
        execute("rm", ["-rf", "/srv/cache"])     # traced, never spawned
"""

from procspine.execution.arguments import Argument, flatten_arguments
from procspine.execution.dispatcher import (
    CommandDescriptor,
    Dispatcher,
    execute,
    format_invocation,
    get_default_dispatcher,
    reset_default_dispatcher,
)
from procspine.execution.outcome import ExecutionOutcome, Failure, Success, map_exit_code
from procspine.execution.policy import (
    ErrorTranslation,
    ExecutionPolicy,
    Explanation,
    ambient_policy,
    asynchronous,
    current_policy,
    dry_run,
    environment,
    error_translations,
    exit_codes,
    explain,
    explanatory,
    input_from,
    output_to,
    policy_scope,
    verbose,
)
from procspine.execution.recovery import (
    Invocation,
    InvocationCatalog,
    RecoveryAction,
    RecoveryDecision,
    accept_all,
    interactive,
    propagate,
    retry_with,
)
from procspine.execution.registry import (
    ExecutableRegistry,
    get_default_registry,
    reset_default_registry,
)
from procspine.execution.remote import RemoteFront, run_remote, watch_remote
from procspine.execution.retry import (
    ConstantBackoff,
    ExponentialBackoff,
    LinearBackoff,
    NoRetry,
    RetryStrategy,
)
from procspine.execution.sinks import CAPTURE, DISCARD, INHERIT, InputSource, OutputMode, OutputSink
from procspine.execution.spawner import ProcessHandle, Spawner, SubprocessSpawner

__all__ = [
    # arguments
    "Argument",
    "flatten_arguments",
    # registry
    "ExecutableRegistry",
    "get_default_registry",
    "reset_default_registry",
    # sinks
    "OutputMode",
    "OutputSink",
    "InputSource",
    "INHERIT",
    "DISCARD",
    "CAPTURE",
    # policy
    "ExecutionPolicy",
    "ErrorTranslation",
    "Explanation",
    "ambient_policy",
    "current_policy",
    "policy_scope",
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
    # outcomes
    "Success",
    "Failure",
    "ExecutionOutcome",
    "map_exit_code",
    # spawning
    "Spawner",
    "SubprocessSpawner",
    "ProcessHandle",
    # dispatcher
    "CommandDescriptor",
    "Dispatcher",
    "execute",
    "format_invocation",
    "get_default_dispatcher",
    "reset_default_dispatcher",
    # retry / recovery
    "RetryStrategy",
    "ExponentialBackoff",
    "LinearBackoff",
    "ConstantBackoff",
    "NoRetry",
    "RecoveryAction",
    "RecoveryDecision",
    "Invocation",
    "InvocationCatalog",
    "propagate",
    "accept_all",
    "retry_with",
    "interactive",
    # remote
    "RemoteFront",
    "run_remote",
    "watch_remote",
]
