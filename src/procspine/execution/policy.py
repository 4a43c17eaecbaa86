"""Execution policy and the dynamically scoped policy context.

WHY
───
Automation code runs dozens of programs under the same conditions: "rehearse
this whole deploy", "capture output for everything in this block", "run these
with DISPLAY set". Repeating those options at every call site is noise, and
mutable module globals leak between threads. The policy context is a stack
of immutable :class:`ExecutionPolicy` snapshots held in a
:class:`contextvars.ContextVar`, so each thread and each asyncio task sees
only its own overrides, and every scope restores the exact prior snapshot on
exit, including exit by exception.

ARCHITECTURE
────────────
::

    ambient (ContextVar) ─────────────► ExecutionPolicy()          defaults
        with dry_run():                 └► replace(dry_run=True)
            with output_to():             └► replace(output=CAPTURE)
                current_policy(timeout=5)   └► replace(timeout=5)  per-call snapshot
            ◄── token reset
        ◄── token reset

Scopes (all context managers)::

    dry_run()  verbose()  explanatory()  output_to(direction=CAPTURE)
    input_from(source)  environment(entries, extend=True)  asynchronous()
    explain(template, *args)  exit_codes(table)  error_translations(table)
    policy_scope(**overrides)   ─ any combination of the above

Example::

    with explain("Publishing {} to {}", wheel, index), verbose():
        execute("twine", ["upload", wheel])
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from procspine.core.errors import ExecutionFailedError, InvalidPolicyError
from procspine.core.settings import get_settings
from procspine.execution.sinks import (
    DISCARD,
    NO_INPUT,
    InputSource,
    OutputMode,
    OutputSink,
    resolve_input,
    resolve_output,
)

DEFAULT_EXIT_CODES: Mapping[int, Any] = MappingProxyType({0: True})


# ── Exit-code and error-translation tables ───────────────────────────────


def _freeze_exit_codes(table: Mapping[int, Any] | None) -> Mapping[int, Any]:
    merged: dict[int, Any] = dict(DEFAULT_EXIT_CODES)
    for code, payload in (table or {}).items():
        if isinstance(code, bool) or not isinstance(code, int):
            raise InvalidPolicyError(f"exit code must be an int, got {code!r}")
        merged[code] = payload
    return MappingProxyType(merged)


@dataclass(frozen=True)
class ErrorTranslation:
    """Error kind (and extra fields) raised for one exit code."""

    error_type: type[ExecutionFailedError]
    fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not (isinstance(self.error_type, type) and issubclass(self.error_type, ExecutionFailedError)):
            raise InvalidPolicyError(
                f"translated error must subclass ExecutionFailedError, got {self.error_type!r}"
            )
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def build(
        self,
        *,
        program: str,
        arguments: Sequence[str],
        exit_code: int,
        captured_output: Any,
    ) -> ExecutionFailedError:
        return self.error_type(
            program=program,
            arguments=arguments,
            exit_code=exit_code,
            captured_output=captured_output,
            **self.fields,
        )


def _as_translation(value: Any) -> ErrorTranslation:
    if isinstance(value, ErrorTranslation):
        return value
    if isinstance(value, tuple) and len(value) == 2 and isinstance(value[1], Mapping):
        return ErrorTranslation(value[0], value[1])
    return ErrorTranslation(value)


def _freeze_translations(table: Mapping[int, Any] | None) -> Mapping[int, ErrorTranslation]:
    frozen: dict[int, ErrorTranslation] = {}
    for code, value in (table or {}).items():
        if isinstance(code, bool) or not isinstance(code, int):
            raise InvalidPolicyError(f"exit code must be an int, got {code!r}")
        frozen[code] = _as_translation(value)
    return MappingProxyType(frozen)


# ── Environment entries ──────────────────────────────────────────────────


def normalize_environment(entries: Mapping[str, Any] | Sequence[str]) -> tuple[str, ...]:
    """Turn a mapping or a ``KEY=VALUE`` list into a tuple of entries."""
    if isinstance(entries, Mapping):
        entries = [f"{key}={value}" for key, value in entries.items()]
    elif isinstance(entries, str):
        raise InvalidPolicyError("environment must be a list of KEY=VALUE entries, not a string")
    result = []
    for entry in entries:
        if not isinstance(entry, str) or "=" not in entry or entry.startswith("="):
            raise InvalidPolicyError(f"environment entry must be KEY=VALUE, got {entry!r}")
        result.append(entry)
    return tuple(result)


def environment_lookup(entries: Sequence[str], key: str) -> str | None:
    """Value of ``key`` in lookup order: the first matching entry wins."""
    prefix = f"{key}="
    for entry in entries:
        if entry.startswith(prefix):
            return entry[len(prefix):]
    return None


def environment_dict(entries: Sequence[str]) -> dict[str, str]:
    """Collapse entries into the mapping handed to the child; shadowed keys drop out."""
    env: dict[str, str] = {}
    for entry in entries:
        key, _, value = entry.partition("=")
        env.setdefault(key, value)
    return env


# ── Explanation text ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Explanation:
    """A ``str.format`` template plus arguments, rendered only when traced."""

    template: str
    args: tuple[Any, ...] = ()

    def render(self) -> str:
        return self.template.format(*self.args) if self.args else self.template


# ── The policy snapshot ──────────────────────────────────────────────────


@dataclass(frozen=True)
class ExecutionPolicy:
    """Immutable set of options for one invocation.

    Fields are normalised on construction, so an invalid output spec, exit
    code table or environment raises here, before anything is spawned.
    ``environment=None`` means "the configured default environment".
    """

    exit_codes: Mapping[int, Any] = field(default_factory=lambda: dict(DEFAULT_EXIT_CODES))
    error_translations: Mapping[int, Any] = field(default_factory=dict)
    environment: tuple[str, ...] | None = None
    input: Any = NO_INPUT
    output: Any = DISCARD
    asynchronous: bool = False
    explanation: Explanation | None = None
    dry_run: bool = False
    verbose: bool = False
    explanatory: bool = False
    timeout: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "exit_codes", _freeze_exit_codes(self.exit_codes))
        object.__setattr__(self, "error_translations", _freeze_translations(self.error_translations))
        if self.environment is not None:
            object.__setattr__(self, "environment", normalize_environment(self.environment))
        object.__setattr__(self, "input", resolve_input(self.input))
        object.__setattr__(self, "output", resolve_output(self.output))
        if isinstance(self.explanation, str):
            object.__setattr__(self, "explanation", Explanation(self.explanation))
        if self.timeout is not None and self.timeout <= 0:
            raise InvalidPolicyError(f"timeout must be positive, got {self.timeout!r}")

    # ``input`` and ``output`` are normalised above; typed accessors for readers
    @property
    def input_source(self) -> InputSource:
        return self.input

    @property
    def output_sink(self) -> OutputSink:
        return self.output

    @property
    def effective_environment(self) -> tuple[str, ...]:
        if self.environment is None:
            return tuple(get_settings().default_environment)
        return self.environment

    @property
    def traced(self) -> bool:
        """Explanation text is echoed before acting."""
        return self.dry_run or self.verbose or self.explanatory

    @property
    def echoes_invocation(self) -> bool:
        """The fully resolved invocation is echoed before acting."""
        return self.dry_run or self.verbose

    def success_payload(self, exit_code: int = 0) -> Any:
        return self.exit_codes.get(exit_code, True)

    def with_overrides(self, **overrides: Any) -> ExecutionPolicy:
        """Fresh snapshot with ``overrides`` applied on top of this one."""
        unknown = set(overrides) - _FIELD_NAMES
        if unknown:
            raise InvalidPolicyError(f"unknown policy options: {sorted(unknown)}")
        return dataclasses.replace(self, **overrides)


_FIELD_NAMES = frozenset(f.name for f in dataclasses.fields(ExecutionPolicy))


# ── Ambient context ──────────────────────────────────────────────────────

_BASE_POLICY = ExecutionPolicy()
_ambient: ContextVar[ExecutionPolicy] = ContextVar("procspine_policy", default=_BASE_POLICY)


def ambient_policy() -> ExecutionPolicy:
    """The policy currently in effect for this thread / task."""
    return _ambient.get()


def current_policy(**overrides: Any) -> ExecutionPolicy:
    """Merge the ambient context with call-site ``overrides`` into a new snapshot."""
    return ambient_policy().with_overrides(**overrides)


@contextmanager
def policy_scope(**overrides: Any) -> Iterator[ExecutionPolicy]:
    """Apply ``overrides`` to the ambient policy for the extent of the block."""
    policy = current_policy(**overrides)
    token = _ambient.set(policy)
    try:
        yield policy
    finally:
        _ambient.reset(token)


def dry_run(enabled: bool = True):
    """Rehearse: trace what would run, spawn nothing, synthesize success."""
    return policy_scope(dry_run=enabled)


def verbose(enabled: bool = True):
    """Echo explanation text and the fully resolved invocation."""
    return policy_scope(verbose=enabled)


def explanatory(enabled: bool = True):
    """Echo only the explanation text."""
    return policy_scope(explanatory=enabled)


def output_to(direction: Any = OutputMode.CAPTURE):
    """Direct standard output: inherit, discard, capture (default) or a stream."""
    return policy_scope(output=direction)


def input_from(source: Any):
    return policy_scope(input=source)


def environment(entries: Mapping[str, Any] | Sequence[str], *, extend: bool = True):
    """Replace the environment, or (default) prepend ``entries`` to it.

    Prepended entries shadow later entries with the same key; the shadowed
    entries remain in the list and reappear once the scope exits.
    """
    new_entries = normalize_environment(entries)
    if extend:
        new_entries = new_entries + ambient_policy().effective_environment
    return policy_scope(environment=new_entries)


def asynchronous(enabled: bool = True):
    """Return live process handles instead of waiting for exit."""
    return policy_scope(asynchronous=enabled)


def explain(template: str, *args: Any):
    return policy_scope(explanation=Explanation(template, args))


def exit_codes(table: Mapping[int, Any]):
    """Replace the valid-exit-code table (``0 → True`` unless overridden)."""
    return policy_scope(exit_codes=table)


def error_translations(table: Mapping[int, Any]):
    return policy_scope(error_translations=table)


__all__ = [
    "DEFAULT_EXIT_CODES",
    "ErrorTranslation",
    "Explanation",
    "ExecutionPolicy",
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
    "normalize_environment",
    "environment_lookup",
    "environment_dict",
]
