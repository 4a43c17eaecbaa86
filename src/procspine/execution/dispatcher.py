"""Execution Dispatcher — run program P with arguments A under a policy.

Manifesto:
Callers never touch raw process primitives. They name a program, hand over
arguments, and get back a typed :class:`~procspine.execution.outcome.Success`
or a typed :class:`~procspine.core.errors.ExecutionFailedError`, with the
options in force taken from the ambient policy context plus call-site
overrides.

ARCHITECTURE
────────────
::

    execute(target, arguments, policy, **overrides)
      │
      ├─ 0. snapshot policy            ambient ⊕ overrides (validated)
      ├─ 1. flatten arguments          str | PathLike | nested sequences
      ├─ 2. resolve target             name → ExecutableRegistry, path, CommandDescriptor
      ├─ 3. trace                      explanation (dry/verbose/explanatory)
      │                                invocation  (dry/verbose)
      ├─ 4. dry run?  ─────────────►   Success(payload for 0, "" if capture)
      ├─ 5. open input, spawn          Spawner.spawn(path, argv, env, stdin, stdout)
      ├─ 6. asynchronous? ─────────►   ProcessHandle (caller reaps)
      └─ 7. reap + map exit code       Success | translated error | ExecutionFailedError

Trace lines go to the configured trace channel (``stderr`` by default)::

    # Publishing dist/pkg.whl
    $ /usr/bin/twine upload dist/pkg.whl  env=[HOME=/tmp] output=discard

Related modules:
    policy.py    — ExecutionPolicy + scopes
    registry.py  — ExecutableRegistry
    spawner.py   — Spawner protocol + ProcessHandle
    outcome.py   — Success / Failure + exit-code mapping

Tags:
    procspine, execution, dispatcher, subprocess

Doc-Types:
    api-reference
"""

from __future__ import annotations

import os
import shlex
import subprocess
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import IO, Any, Union

from procspine.core.errors import InvalidArgumentError, RequiredExecutableNotFoundError, SpawnError
from procspine.core.logging import get_logger
from procspine.core.settings import ProcSpineSettings, get_settings
from procspine.execution.arguments import flatten_arguments
from procspine.execution.outcome import Success
from procspine.execution.policy import ExecutionPolicy, ambient_policy, environment_dict
from procspine.execution.registry import ExecutableRegistry, get_default_registry, has_path_separator
from procspine.execution.sinks import InputSource, has_fileno
from procspine.execution.spawner import ProcessHandle, Spawner, SubprocessSpawner

logger = get_logger(__name__)


@dataclass(frozen=True)
class CommandDescriptor:
    """An already-built command: a program path plus leading arguments.

    Used for wrappers (``ssh host``, ``sudo -u deploy``) whose own arguments
    precede the caller's.
    """

    path: str | os.PathLike
    prefix: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "prefix", flatten_arguments(list(self.prefix)))


Target = Union[str, os.PathLike, CommandDescriptor]


def format_invocation(
    program: str,
    arguments: Sequence[str],
    environment: Sequence[str],
    policy: ExecutionPolicy,
) -> str:
    """Single-line, human-readable rendering of a resolved invocation."""
    line = (
        f"$ {shlex.join([program, *arguments])}"
        f"  env=[{' '.join(environment)}]"
        f" output={policy.output_sink.describe()}"
    )
    if policy.input_source.kind != "none":
        line += f" input={policy.input_source.describe()}"
    if policy.asynchronous:
        line += " (async)"
    if policy.dry_run:
        line += " (dry run)"
    return line


class Dispatcher:
    """Turns "run program P with arguments A" into a typed outcome.

    Parameters
    ----------
    registry : ExecutableRegistry, optional
        Name resolver; defaults to the process-wide registry (looked up per
        call, so ``reset_default_registry()`` takes effect).
    spawner : Spawner, optional
        Platform spawn primitive; defaults to :class:`SubprocessSpawner`.
    trace : stream, optional
        Channel for trace lines; defaults to ``settings.trace_stream``.
    settings : ProcSpineSettings, optional
    """

    def __init__(
        self,
        registry: ExecutableRegistry | None = None,
        spawner: Spawner | None = None,
        trace: IO[str] | None = None,
        settings: ProcSpineSettings | None = None,
    ):
        self._registry = registry
        self._spawner = spawner or SubprocessSpawner()
        self._trace = trace
        self._settings = settings

    @property
    def registry(self) -> ExecutableRegistry:
        return self._registry or get_default_registry()

    @property
    def settings(self) -> ProcSpineSettings:
        return self._settings or get_settings()

    # ── Public API ───────────────────────────────────────────────────

    def execute(
        self,
        target: Target,
        arguments: Any = (),
        policy: ExecutionPolicy | None = None,
        *,
        required: bool = False,
        **overrides: Any,
    ) -> Success | ProcessHandle:
        """Run ``target`` with ``arguments``.

        Args:
            target: Program name (resolved via the registry), a path, or a
                :class:`CommandDescriptor`.
            arguments: Argument tokens; see
                :func:`~procspine.execution.arguments.flatten_arguments`.
            policy: Explicit policy; defaults to the ambient policy.
            required: Raise instead of warning when a name cannot be resolved.
            **overrides: Policy fields for this call only (``output="capture"``,
                ``exit_codes={1: "differs"}``, ``asynchronous=True``, ...).

        Returns:
            ``Success`` for a blocking call, a live ``ProcessHandle`` for an
            asynchronous one.

        Raises:
            ExecutionFailedError: Exit code outside the valid table (or its
                translated subclass).
            RequiredExecutableNotFoundError: ``required`` and the name is unknown.
            SpawnError: The platform could not start the program.
            ConfigError: Invalid output spec, argument or policy option.
        """
        policy = (policy or ambient_policy()).with_overrides(**overrides)
        arguments = flatten_arguments(arguments)
        program, prefix = self._resolve_target(target, required=required)
        argv = prefix + arguments
        env_entries = policy.effective_environment

        if policy.traced and policy.explanation is not None:
            self._emit(f"# {policy.explanation.render()}")
        if policy.echoes_invocation:
            self._emit(format_invocation(program, argv, env_entries, policy))

        if policy.dry_run:
            logger.info("dispatcher.dry_run", program=program, arguments=list(argv))
            captured = "" if policy.output_sink.captures else None
            return Success(policy.success_payload(0), captured)

        handle = self._spawn(program, argv, env_entries, policy)
        if policy.asynchronous:
            return handle
        return handle.wait()

    # ── Internals ────────────────────────────────────────────────────

    def _resolve_target(self, target: Target, *, required: bool) -> tuple[str, tuple[str, ...]]:
        if isinstance(target, CommandDescriptor):
            return os.fspath(target.path), target.prefix
        if isinstance(target, os.PathLike):
            return os.fspath(target), ()
        if not isinstance(target, str) or not target:
            raise InvalidArgumentError(f"target must be a program name, path or CommandDescriptor, got {target!r}")
        if has_path_separator(target):
            return target, ()

        result = self.registry.lookup(target)
        if result.is_err():
            if required:
                raise RequiredExecutableNotFoundError.from_warning(result.error)
            # proceed with the bare name; the spawn primitive gets the last word
            return target, ()
        return str(result.value), ()

    def _trace_stream(self) -> IO[str] | None:
        if self._trace is not None:
            return self._trace
        channel = self.settings.trace_stream
        if channel == "stdout":
            return sys.stdout
        if channel == "stderr":
            return sys.stderr
        return None

    def _emit(self, line: str) -> None:
        stream = self._trace_stream()
        if stream is not None:
            stream.write(line + "\n")
            stream.flush()

    def _open_input(self, source: InputSource) -> tuple[Any, bytes | None, IO[bytes] | None]:
        """Return (stdin for the spawner, data to feed, file to close after spawn)."""
        encoding = self.settings.encoding
        if source.kind == "none":
            return subprocess.DEVNULL, None, None
        if source.kind == "inherit":
            return None, None, None
        if source.kind == "path":
            opened = open(source.path, "rb")
            return opened, None, opened
        if source.kind == "stream" and has_fileno(source.stream):
            return source.stream, None, None
        data = source.data if source.kind == "data" else source.stream.read()
        if isinstance(data, str):
            data = data.encode(encoding, "surrogateescape")
        return subprocess.PIPE, data, None

    def _spawn(
        self,
        program: str,
        argv: tuple[str, ...],
        env_entries: tuple[str, ...],
        policy: ExecutionPolicy,
    ) -> ProcessHandle:
        sink = policy.output_sink
        opened = None
        try:
            stdin, input_data, opened = self._open_input(policy.input_source)
            process = self._spawner.spawn(
                program,
                argv,
                environment_dict(env_entries),
                stdin,
                sink.popen_stdout(),
            )
        except OSError as exc:
            logger.error("dispatcher.spawn_failed", program=program, error=str(exc))
            raise SpawnError(program, argv, exc) from exc
        finally:
            if opened is not None:
                opened.close()

        logger.debug(
            "dispatcher.spawned",
            program=program,
            arguments=list(argv),
            pid=process.pid,
            output=sink.describe(),
            asynchronous=policy.asynchronous,
        )
        return ProcessHandle(
            process,
            program=program,
            arguments=argv,
            policy=policy,
            sink=sink,
            input_data=input_data,
            encoding=self.settings.encoding,
        )


# === GLOBAL DEFAULT DISPATCHER ===

_default_dispatcher: Dispatcher | None = None


def get_default_dispatcher() -> Dispatcher:
    global _default_dispatcher
    if _default_dispatcher is None:
        _default_dispatcher = Dispatcher()
    return _default_dispatcher


def reset_default_dispatcher() -> None:
    """Reset the global dispatcher (for testing)."""
    global _default_dispatcher
    _default_dispatcher = None


def execute(
    target: Target,
    arguments: Any = (),
    policy: ExecutionPolicy | None = None,
    *,
    required: bool = False,
    **overrides: Any,
) -> Success | ProcessHandle:
    """Run ``target`` through the default dispatcher. See :meth:`Dispatcher.execute`."""
    return get_default_dispatcher().execute(
        target, arguments, policy, required=required, **overrides
    )
