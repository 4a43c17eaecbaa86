"""Retry/Recovery frontend — explicit decisions at the failure point.

Manifesto:
Supervised automation (a release script an operator is watching, a desktop
helper that needs ``DISPLAY``) sometimes wants a human to decide what a
failed program means. Unattended automation must never block on a prompt.
So recovery is a *parameter*: every :class:`Invocation` run takes a
:class:`RecoveryPolicy`, and the default, :func:`propagate`, simply re-raises.

ARCHITECTURE
────────────
::

    Invocation(name, target, arguments, overrides)
      └── .run(recovery=propagate)
            loop:
              dispatcher.execute(...)  ──► Success ──► return
                 │ ExecutionFailedError
                 ▼
              recovery(error, attempt) ──► RecoveryDecision
                 ├─ RETRY           → run again unchanged (after decision.delay)
                 ├─ RETRY_WITH_ENV  → prepend "KEY=VALUE", run again
                 ├─ ACCEPT          → Success(None, captured, recovered_from=error)
                 └─ FAIL            → re-raise

    Built-in policies
      propagate            ─ always FAIL (default, non-interactive)
      accept_all           ─ always ACCEPT
      retry_with(strategy) ─ RETRY while the RetryStrategy allows, then FAIL
                             (optionally only errors flagged retryable)
      interactive(...)     ─ ask an operator on the terminal

    InvocationCatalog      ─ named, pre-configured invocations

Only failures of the program itself (``ExecutionFailedError`` and its
translated subclasses) reach the policy. Not-found, spawn and configuration
errors propagate untouched.

Tags:
    procspine, execution, recovery, retry, interactive

Doc-Types:
    api-reference
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import typer

from procspine.core.errors import ExecutionFailedError, InvalidPolicyError, is_retryable
from procspine.core.logging import LogContext, get_logger
from procspine.execution.dispatcher import Dispatcher, Target, get_default_dispatcher
from procspine.execution.outcome import Success
from procspine.execution.policy import ambient_policy, normalize_environment
from procspine.execution.retry import RetryStrategy

logger = get_logger(__name__)


class RecoveryAction(str, Enum):
    RETRY = "retry"
    RETRY_WITH_ENV = "retry_with_env"
    ACCEPT = "accept"
    FAIL = "fail"


@dataclass(frozen=True)
class RecoveryDecision:
    """What to do about one failure."""

    action: RecoveryAction
    env_entry: str | None = None
    delay: float = 0.0

    def __post_init__(self) -> None:
        if self.action is RecoveryAction.RETRY_WITH_ENV:
            if self.env_entry is None:
                raise InvalidPolicyError("RETRY_WITH_ENV needs an env_entry")
            normalize_environment([self.env_entry])


RecoveryPolicy = Callable[[ExecutionFailedError, int], "RecoveryDecision | RecoveryAction"]


def _as_decision(value: RecoveryDecision | RecoveryAction) -> RecoveryDecision:
    if isinstance(value, RecoveryDecision):
        return value
    if isinstance(value, RecoveryAction):
        return RecoveryDecision(value)
    raise InvalidPolicyError(f"recovery policy returned {value!r}, not a RecoveryDecision")


# ── Built-in policies ────────────────────────────────────────────────────


def propagate(error: ExecutionFailedError, attempt: int) -> RecoveryDecision:
    """Never recover: the failure propagates to the caller."""
    return RecoveryDecision(RecoveryAction.FAIL)


def accept_all(error: ExecutionFailedError, attempt: int) -> RecoveryDecision:
    """Treat every failure as a successful no-op."""
    return RecoveryDecision(RecoveryAction.ACCEPT)


def retry_with(
    strategy: RetryStrategy,
    *,
    exhausted: RecoveryAction = RecoveryAction.FAIL,
    retryable_only: bool = False,
) -> RecoveryPolicy:
    """Automated policy: retry while ``strategy`` allows, then ``exhausted``.

    An exit status rarely says whether a failure is transient, so every
    failure is retried by default. With ``retryable_only`` only errors flagged
    retryable are: timeouts, and translated errors whose class sets
    ``default_retryable``. Anything else goes straight to ``exhausted``.

    Example:
        >>> policy = retry_with(ExponentialBackoff(max_retries=3, base_delay=0.5))
        >>> invocation.run(recovery=policy)
    """

    def policy(error: ExecutionFailedError, attempt: int) -> RecoveryDecision:
        retries_made = attempt - 1
        if retryable_only and not is_retryable(error):
            return RecoveryDecision(exhausted)
        if strategy.should_retry(retries_made, error):
            return RecoveryDecision(RecoveryAction.RETRY, delay=strategy.next_delay(retries_made))
        return RecoveryDecision(exhausted)

    return policy


_CHOICES = {
    "r": RecoveryAction.RETRY,
    "e": RecoveryAction.RETRY_WITH_ENV,
    "a": RecoveryAction.ACCEPT,
    "f": RecoveryAction.FAIL,
}


def interactive(
    *,
    prompt: Callable[..., str] = typer.prompt,
    echo: Callable[[str], Any] = typer.echo,
    env_hint: str = "DISPLAY=:0",
    max_output_lines: int = 20,
) -> RecoveryPolicy:
    """Operator policy: describe the failure and ask what to do.

    ``prompt`` and ``echo`` default to typer's terminal helpers and can be
    swapped for a GUI or a scripted operator.
    """

    def policy(error: ExecutionFailedError, attempt: int) -> RecoveryDecision:
        echo(f"{type(error).__name__}: {error.message} (attempt {attempt})")
        echo(f"  command: {' '.join([error.program, *error.arguments])}")
        if error.captured and error.captured_output:
            tail = error.captured_output.splitlines()[-max_output_lines:]
            echo("  output:")
            for line in tail:
                echo(f"    {line}")

        while True:
            answer = prompt(
                "[r]etry, retry with [e]nvironment variable, [a]ccept as success, [f]ail",
                default="f",
            )
            action = _CHOICES.get(str(answer).strip().lower()[:1])
            if action is None:
                echo(f"Unrecognised choice {answer!r}")
                continue
            if action is not RecoveryAction.RETRY_WITH_ENV:
                return RecoveryDecision(action)
            entry = prompt("Environment entry (KEY=VALUE)", default=env_hint)
            try:
                return RecoveryDecision(action, env_entry=entry)
            except InvalidPolicyError as exc:
                echo(str(exc))

    return policy


# ── Invocations ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Invocation:
    """A fixed, named invocation that can be run under a recovery policy.

    ``overrides`` are policy fields applied on every run (``output``,
    ``exit_codes``, ``environment``...). Recovery needs the exit status, so
    runs are always blocking.
    """

    name: str
    target: Target
    arguments: Any = ()
    overrides: Mapping[str, Any] = field(default_factory=dict)

    def _overrides_with(self, extra_env: list[str]) -> dict[str, Any]:
        overrides = dict(self.overrides)
        overrides["asynchronous"] = False
        if extra_env:
            if overrides.get("environment") is not None:
                base = normalize_environment(overrides["environment"])
            else:
                base = ambient_policy().effective_environment
            overrides["environment"] = tuple(extra_env) + base
        return overrides

    def run(
        self,
        recovery: RecoveryPolicy = propagate,
        *,
        dispatcher: Dispatcher | None = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> Success:
        """Run, consulting ``recovery`` after each failure.

        Raises:
            ExecutionFailedError: When the policy decides FAIL.
        """
        dispatcher = dispatcher or get_default_dispatcher()
        extra_env: list[str] = []
        attempt = 0

        with LogContext(invocation=self.name):
            while True:
                attempt += 1
                try:
                    return dispatcher.execute(
                        self.target,
                        self.arguments,
                        **self._overrides_with(extra_env),
                    )
                except ExecutionFailedError as error:
                    error.with_context(invocation=self.name)
                    decision = _as_decision(recovery(error, attempt))
                    logger.info(
                        "recovery.decision",
                        action=decision.action.value,
                        attempt=attempt,
                        exit_code=error.exit_code,
                    )
                    if decision.action is RecoveryAction.FAIL:
                        raise
                    if decision.action is RecoveryAction.ACCEPT:
                        captured = error.captured_output if error.captured else None
                        return Success(None, captured, recovered_from=error)
                    if decision.action is RecoveryAction.RETRY_WITH_ENV:
                        extra_env.insert(0, decision.env_entry)
                    if decision.delay > 0:
                        sleep(decision.delay)


class InvocationCatalog:
    """Named, pre-configured invocations.

    Example:
        >>> catalog = InvocationCatalog()
        >>> catalog.define("open-report", "xdg-open", ["report.html"])
        >>> catalog.run("open-report", recovery=interactive())
    """

    def __init__(self) -> None:
        self._invocations: dict[str, Invocation] = {}

    def define(self, name: str, target: Target, arguments: Any = (), **overrides: Any) -> Invocation:
        # fail fast on bad overrides rather than at first run
        ambient_policy().with_overrides(**overrides)
        invocation = Invocation(name, target, arguments, overrides)
        self._invocations[name] = invocation
        return invocation

    def get(self, name: str) -> Invocation:
        if name not in self._invocations:
            raise ValueError(
                f"No invocation named {name!r}. Available: {sorted(self._invocations) or 'none'}"
            )
        return self._invocations[name]

    def has(self, name: str) -> bool:
        return name in self._invocations

    def names(self) -> list[str]:
        return sorted(self._invocations)

    def run(self, name: str, recovery: RecoveryPolicy = propagate, **kwargs: Any) -> Success:
        return self.get(name).run(recovery, **kwargs)
