"""
Shared pytest fixtures for procspine tests.

This module provides:
- Global-state cleanup (default registry, dispatcher, remote front, settings)
- A spy spawner returning scripted fake processes, so dispatcher tests can
  assert exactly what would have been spawned without starting anything
- A fake-executable factory for registry tests

Tests marked ``posix`` start real processes (``/bin/true``, ``/bin/false``,
``sys.executable``) and are skipped on Windows.
"""

from __future__ import annotations

import io
import os
import stat
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
from structlog.testing import capture_logs

from procspine.core.logging import configure_logging
from procspine.core.settings import reset_settings
from procspine.execution.dispatcher import Dispatcher, reset_default_dispatcher
from procspine.execution.registry import ExecutableRegistry, reset_default_registry
from procspine.execution.remote import reset_default_front


# =============================================================================
# Markers
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip real-process tests where there is no POSIX userland."""
    if sys.platform != "win32":
        return
    skip = pytest.mark.skip(reason="needs /bin/true, /bin/false and a POSIX process model")
    for item in items:
        if "posix" in item.keywords:
            item.add_marker(skip)


# =============================================================================
# Global state cleanup
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _logging():
    configure_logging(level="WARNING", json_format=True)


@pytest.fixture
def captured_logs():
    """Structured log entries at every level, including debug."""
    configure_logging(level="DEBUG", json_format=True)
    with capture_logs() as logs:
        yield logs
    configure_logging(level="WARNING", json_format=True)


@pytest.fixture(autouse=True)
def _clean_globals(monkeypatch: pytest.MonkeyPatch):
    """Every test starts with fresh settings, registry, dispatcher and front."""
    for key in list(os.environ):
        if key.startswith("PROCSPINE_"):
            monkeypatch.delenv(key)
    reset_settings()
    reset_default_registry()
    reset_default_dispatcher()
    reset_default_front()
    yield
    reset_settings()
    reset_default_registry()
    reset_default_dispatcher()
    reset_default_front()


# =============================================================================
# Spy spawner
# =============================================================================


class _RecordingStdin(io.BytesIO):
    """stdin pipe that remembers what was written before it was closed."""

    def __init__(self) -> None:
        super().__init__()
        self.received: bytes | None = None

    def close(self) -> None:
        if not self.closed:
            self.received = self.getvalue()
        super().close()


class FakeProcess:
    """Minimal ``subprocess.Popen`` stand-in driven by a script."""

    def __init__(
        self,
        *,
        returncode: int = 0,
        stdout: bytes = b"",
        pid: int = 4242,
        piped: bool = False,
        stdin_piped: bool = False,
        hang: bool = False,
    ):
        self.pid = pid
        self.returncode: int | None = None
        self._final_code = returncode
        self._output = stdout
        self.stdout = io.BytesIO(stdout) if piped else None
        self.stdin = _RecordingStdin() if stdin_piped else None
        self.hang = hang
        self.killed = False
        self.terminated = False
        self.communicated_input: bytes | None = None

    def poll(self) -> int | None:
        if self.hang:
            return None
        return self.returncode

    def communicate(self, input: bytes | None = None, timeout: float | None = None):
        if self.hang:
            raise subprocess.TimeoutExpired(["fake"], timeout)
        if input is not None:
            self.communicated_input = input
        if self.stdin is not None and not self.stdin.closed:
            self.stdin.close()
        if self.returncode is None:
            self.returncode = self._final_code
        rest = self.stdout.read() if self.stdout is not None else None
        return rest, None

    def wait(self, timeout: float | None = None) -> int:
        if self.hang:
            raise subprocess.TimeoutExpired(["fake"], timeout)
        if self.returncode is None:
            self.returncode = self._final_code
        return self.returncode

    def kill(self) -> None:
        self.killed = True
        self.hang = False
        self.returncode = -9

    def terminate(self) -> None:
        self.terminated = True
        self.hang = False
        self.returncode = -15


@dataclass
class SpawnCall:
    path: str
    args: tuple[str, ...]
    env: dict[str, str]
    stdin: Any
    stdout: Any
    process: FakeProcess | None = None


@dataclass
class SpySpawner:
    """Records every spawn and hands back scripted :class:`FakeProcess` objects."""

    calls: list[SpawnCall] = field(default_factory=list)
    scripts: list[dict[str, Any]] = field(default_factory=list)
    error: OSError | None = None

    def will_return(self, returncode: int = 0, stdout: bytes = b"", **kwargs: Any) -> SpySpawner:
        self.scripts.append({"returncode": returncode, "stdout": stdout, **kwargs})
        return self

    def spawn(self, path, args, env, stdin, stdout):
        call = SpawnCall(path, tuple(args), dict(env), stdin, stdout)
        self.calls.append(call)
        if self.error is not None:
            raise self.error
        script = self.scripts.pop(0) if self.scripts else {}
        call.process = FakeProcess(
            piped=stdout is subprocess.PIPE,
            stdin_piped=stdin is subprocess.PIPE,
            **script,
        )
        return call.process

    @property
    def last(self) -> SpawnCall:
        return self.calls[-1]


@pytest.fixture
def spy_spawner() -> SpySpawner:
    return SpySpawner()


@pytest.fixture
def trace() -> io.StringIO:
    """Trace channel that tests can read back."""
    return io.StringIO()


# =============================================================================
# Registry / executables
# =============================================================================


@pytest.fixture
def bin_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "bin"
    directory.mkdir()
    return directory


@pytest.fixture
def fake_executable(bin_dir: Path):
    """Factory creating an executable shell script in ``bin_dir``."""

    def make(name: str, body: str = "exit 0\n", *, executable: bool = True) -> Path:
        path = bin_dir / name
        path.write_text("#!/bin/sh\n" + body)
        mode = path.stat().st_mode
        if executable:
            path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        else:
            path.chmod(mode & ~(stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))
        return path

    return make


@pytest.fixture
def registry(bin_dir: Path) -> ExecutableRegistry:
    return ExecutableRegistry(search_path=[bin_dir])


@pytest.fixture
def dispatcher(registry: ExecutableRegistry, spy_spawner: SpySpawner, trace: io.StringIO) -> Dispatcher:
    """Dispatcher wired to the spy spawner and an in-memory trace channel."""
    return Dispatcher(registry=registry, spawner=spy_spawner, trace=trace)


@pytest.fixture
def real_dispatcher(trace: io.StringIO) -> Dispatcher:
    """Dispatcher that starts real processes."""
    return Dispatcher(trace=trace)
