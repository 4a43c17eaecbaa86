"""Platform spawn primitive and the ProcessHandle that owns a running child.

The dispatcher never calls :mod:`subprocess` directly; it goes through a
:class:`Spawner`, which tests replace with a spy. The spawner returns a
``subprocess.Popen``-compatible object (``pid``, ``stdout``, ``poll``,
``communicate``, ``kill``, ``terminate``, ``wait``).

:class:`ProcessHandle` owns that object and its capture pipe until the
outcome has been produced. In blocking mode the dispatcher reaps it at once;
in asynchronous mode the caller holds it and must reap it with
:meth:`ProcessHandle.wait` (or a ``with`` block). Reaping maps the exit code
exactly as a blocking call would have.

::

    handle = execute("rsync", [...], asynchronous=True)   # returns immediately
    ...                                                   # caller keeps working
    outcome = handle.wait()                               # Success, or raises
"""

from __future__ import annotations

import subprocess
import threading
from collections.abc import Iterator, Mapping, Sequence
from typing import Any, Protocol

from procspine.core.errors import ConfigError, ExecutionFailedError, ExecutionTimeoutError
from procspine.core.logging import get_logger
from procspine.execution.outcome import Success, map_exit_code
from procspine.execution.policy import ExecutionPolicy
from procspine.execution.sinks import OutputSink

logger = get_logger(__name__)


class Spawner(Protocol):
    """Creates a child process. Raises ``OSError`` if the program cannot start."""

    def spawn(
        self,
        path: str,
        args: Sequence[str],
        env: Mapping[str, str],
        stdin: Any,
        stdout: Any,
    ) -> Any:
        ...


class SubprocessSpawner:
    """Default spawner backed by :class:`subprocess.Popen`."""

    def spawn(
        self,
        path: str,
        args: Sequence[str],
        env: Mapping[str, str],
        stdin: Any,
        stdout: Any,
    ) -> subprocess.Popen:
        return subprocess.Popen(
            [path, *args],
            env=dict(env),
            stdin=stdin,
            stdout=stdout,
            close_fds=True,
        )


class ProcessHandle:
    """Live or completed reference to a spawned process.

    Whoever holds the handle is responsible for reaping it. ``wait()`` is
    idempotent: later calls return the same ``Success`` or re-raise the same
    error. Captured bytes are decoded with ``surrogateescape``, so
    ``captured_output.encode(encoding, "surrogateescape")`` gives back exactly
    what the child wrote.
    """

    def __init__(
        self,
        process: Any,
        *,
        program: str,
        arguments: tuple[str, ...],
        policy: ExecutionPolicy,
        sink: OutputSink,
        input_data: bytes | None = None,
        encoding: str = "utf-8",
    ):
        self._process = process
        self.program = program
        self.arguments = arguments
        self.policy = policy
        self._sink = sink
        self._pending_input = input_data
        self._encoding = encoding
        self._chunks: list[bytes] = []
        self._outcome: Success | None = None
        self._error: ExecutionFailedError | None = None
        self._reaped = False
        self._streamed = False
        self._writer: threading.Thread | None = None
        self._drainer: threading.Thread | None = None
        self._rest: bytes | None = None

    def __repr__(self) -> str:
        state = "reaped" if self._reaped else ("running" if self.running else "exited")
        return f"ProcessHandle(pid={self.pid}, program={self.program!r}, {state})"

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def running(self) -> bool:
        return self._process.poll() is None

    @property
    def reaped(self) -> bool:
        return self._reaped

    def poll(self) -> int | None:
        """Exit code if the child has exited, else None. Does not map the outcome."""
        return self._process.poll()

    def _decode(self, raw: bytes) -> str:
        return raw.decode(self._encoding, errors="surrogateescape")

    # ── Streaming ────────────────────────────────────────────────────

    def _start_writer(self) -> None:
        data, self._pending_input = self._pending_input, None
        stdin = self._process.stdin
        if data is None or stdin is None:
            return

        def feed() -> None:
            try:
                stdin.write(data)
            except BrokenPipeError:
                pass  # child exited without reading all of its input
            finally:
                try:
                    stdin.close()
                except BrokenPipeError:
                    pass

        self._writer = threading.Thread(target=feed, name=f"procspine-stdin-{self.pid}", daemon=True)
        self._writer.start()

    def _join_writer(self) -> None:
        if self._writer is not None:
            self._writer.join()
            self._writer = None

    def iter_lines(self) -> Iterator[str]:
        """Lazily yield lines of piped standard output, without line endings.

        Finite: ends when the child closes its output. Not restartable. Lines
        consumed here are still part of the captured output returned by
        :meth:`wait`. Pending input is written from a separate thread while
        lines are read, so a child echoing its input never stalls.

        Raises:
            ConfigError: If output is not piped (capture or forwarded stream).
        """
        if not self._sink.pipes or self._process.stdout is None:
            raise ConfigError(f"output of {self.program} is {self._sink.describe()}, not piped")
        if self._streamed:
            return
        self._streamed = True
        self._start_writer()
        for raw in iter(self._process.stdout.readline, b""):
            self._chunks.append(raw)
            yield self._decode(raw).removesuffix("\n")
        self._join_writer()

    def _read_rest(self) -> None:
        stdout = self._process.stdout
        self._rest = stdout.read()
        stdout.close()

    def _drain_stream(self, timeout: float | None) -> bytes | None:
        """Finish a streamed child: read what ``iter_lines`` left, then reap.

        ``communicate`` cannot be used here since stdin is already closed and
        ``readline`` may have buffered output ahead of the last line yielded.
        """
        if self._drainer is None:
            self._drainer = threading.Thread(
                target=self._read_rest, name=f"procspine-stdout-{self.pid}", daemon=True
            )
            self._drainer.start()
        self._drainer.join(timeout)
        if self._drainer.is_alive():
            raise subprocess.TimeoutExpired([self.program, *self.arguments], timeout)
        self._process.wait(timeout=timeout)
        self._join_writer()
        rest, self._rest = self._rest, None
        return rest

    # ── Reaping ──────────────────────────────────────────────────────

    def _collect(self, timeout: float | None) -> bytes | None:
        try:
            if self._streamed:
                out = self._drain_stream(timeout)
            else:
                out, _ = self._process.communicate(input=self._pending_input, timeout=timeout)
        except subprocess.TimeoutExpired:
            self._process.kill()
            if self._streamed:
                out = self._drain_stream(None)
            else:
                out, _ = self._process.communicate()
            self._store(out)
            logger.warning("dispatcher.timeout", program=self.program, pid=self.pid, timeout=timeout)
            raise ExecutionTimeoutError(
                f"{self.program} did not exit within {timeout}s",
                program=self.program,
                arguments=self.arguments,
                exit_code=self._process.returncode,
                captured_output=self._captured_text(),
            ) from None
        finally:
            self._pending_input = None
        return out

    def _store(self, out: bytes | None) -> None:
        if out:
            self._chunks.append(out)

    def _captured_text(self) -> Any:
        if not self._sink.captures:
            return None
        return self._decode(b"".join(self._chunks))

    def wait(self, timeout: float | None = None) -> Success:
        """Reap the child and map its exit code.

        Args:
            timeout: Bounded wait in seconds; defaults to the policy's
                ``timeout`` (no bound if that is None too). On expiry the
                child is killed and ``ExecutionTimeoutError`` raised.

        Returns:
            ``Success(payload, captured_output)``.

        Raises:
            ExecutionFailedError: Generic or translated failure.
        """
        if self._reaped:
            if self._error is not None:
                raise self._error
            return self._outcome

        try:
            out = self._collect(timeout if timeout is not None else self.policy.timeout)
        except ExecutionTimeoutError as exc:
            self._reaped = True
            self._error = exc
            raise

        self._store(out)
        self._reaped = True
        exit_code = self._process.returncode
        captured = self._captured_text()

        if self._sink.forwards:
            # forwarded text is for display; undecodable bytes become U+FFFD
            self._sink.stream.write(b"".join(self._chunks).decode(self._encoding, errors="replace"))

        logger.debug("dispatcher.completed", program=self.program, pid=self.pid, exit_code=exit_code)
        try:
            self._outcome = map_exit_code(
                self.policy,
                program=self.program,
                arguments=self.arguments,
                exit_code=exit_code,
                captured_output=captured,
            )
        except ExecutionFailedError as exc:
            self._error = exc
            logger.info(
                "dispatcher.failed",
                program=self.program,
                exit_code=exit_code,
                error_type=type(exc).__name__,
            )
            raise
        return self._outcome

    def kill(self) -> None:
        """Send SIGKILL (TerminateProcess on Windows) if still running. Does not reap."""
        if self._process.poll() is None:
            self._process.kill()

    def terminate(self) -> None:
        if self._process.poll() is None:
            self._process.terminate()

    def __enter__(self) -> ProcessHandle:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if self._reaped:
            return
        if exc_type is None:
            self.wait()
            return
        self.kill()
        try:
            self.wait()
        except ExecutionFailedError:
            # the block's own exception propagates; wait() re-raises this one
            pass
