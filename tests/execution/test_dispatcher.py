"""Tests for the execution dispatcher.

Most tests run against the spy spawner from ``conftest.py``; the ``posix``
classes start real processes to check the end-to-end behaviour.
"""

from __future__ import annotations

import io
import subprocess
import sys
import threading
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from procspine.core.errors import (
    NOT_CAPTURED,
    ExecutionFailedError,
    ExecutionTimeoutError,
    InvalidArgumentError,
    InvalidOutputSpecError,
    RequiredExecutableNotFoundError,
    SpawnError,
)
from procspine.execution import policy as ctx
from procspine.execution.dispatcher import CommandDescriptor, Dispatcher, execute, format_invocation
from procspine.execution.outcome import Failure, Success
from procspine.execution.policy import ExecutionPolicy
from procspine.execution.spawner import ProcessHandle


class NoChanges(ExecutionFailedError):
    """Translated kind used by the tests."""


class TestTargetResolution:
    """Tests for turning a target into a program path."""

    def test_name_resolved_through_registry(self, dispatcher, spy_spawner, fake_executable):
        """A bare name is looked up on the search path."""
        tool = fake_executable("tool")
        dispatcher.execute("tool", ["--flag"])
        assert spy_spawner.last.path == str(tool)
        assert spy_spawner.last.args == ("--flag",)

    def test_unresolved_name_proceeds_bare(self, dispatcher, spy_spawner):
        """An unknown name is spawned as-is after a warning."""
        with capture_logs() as logs:
            dispatcher.execute("ghost")
        assert spy_spawner.last.path == "ghost"
        assert any(entry["event"] == "registry.not_found" for entry in logs)

    def test_required_name_raises(self, dispatcher, spy_spawner):
        """required=True upgrades a miss to a fatal error before spawning."""
        with pytest.raises(RequiredExecutableNotFoundError):
            dispatcher.execute("ghost", required=True)
        assert spy_spawner.calls == []

    def test_path_target_skips_registry(self, dispatcher, spy_spawner):
        """Path targets are used verbatim."""
        dispatcher.execute(Path("/opt/app/run"), ["a"])
        assert spy_spawner.last.path == "/opt/app/run"

    def test_command_descriptor_prefix_precedes_arguments(self, dispatcher, spy_spawner):
        """Descriptor prefix arguments come before call arguments."""
        target = CommandDescriptor("/usr/bin/sudo", ("-u", "deploy"))
        dispatcher.execute(target, ["whoami"])
        assert spy_spawner.last.path == "/usr/bin/sudo"
        assert spy_spawner.last.args == ("-u", "deploy", "whoami")

    def test_arguments_flattened_before_spawn(self, dispatcher, spy_spawner):
        """Nested lists and paths flatten into string tokens."""
        dispatcher.execute("/bin/tar", ["-C", Path("/srv"), ["-x", "-f", Path("a.tar")]])
        assert spy_spawner.last.args == ("-C", "/srv", "-x", "-f", "a.tar")

    def test_bad_argument_never_spawns(self, dispatcher, spy_spawner):
        """An argument with no string form is rejected up front."""
        with pytest.raises(InvalidArgumentError):
            dispatcher.execute("/bin/echo", [object()])
        assert spy_spawner.calls == []

    @pytest.mark.parametrize("target", ["", None, 42])
    def test_bad_target(self, dispatcher, target):
        """Empty or non-string targets are rejected."""
        with pytest.raises(InvalidArgumentError):
            dispatcher.execute(target)


class TestExitCodeMapping:
    """Tests for mapping exit codes to payloads and errors."""

    @pytest.mark.parametrize("code, payload", [(0, True), (1, "differs"), (7, None)])
    def test_valid_codes_return_payload(self, dispatcher, spy_spawner, code, payload):
        """Codes in the valid table return their payload."""
        spy_spawner.will_return(code)
        outcome = dispatcher.execute("/usr/bin/diff", ["a", "b"], exit_codes={1: "differs", 7: None})
        assert outcome == Success(payload)

    def test_translated_error(self, dispatcher, spy_spawner):
        """Translated codes raise the declared error kind with its fields."""
        spy_spawner.will_return(1)
        with pytest.raises(NoChanges) as excinfo:
            dispatcher.execute(
                "/usr/bin/git",
                ["commit"],
                error_translations={1: (NoChanges, {"branch": "main"})},
            )
        error = excinfo.value
        assert (error.program, error.arguments, error.exit_code) == ("/usr/bin/git", ("commit",), 1)
        assert error.extra == {"branch": "main"}
        assert error.captured_output is NOT_CAPTURED

    def test_valid_table_wins_over_translation(self, dispatcher, spy_spawner):
        """A code in both tables counts as success."""
        spy_spawner.will_return(1)
        outcome = dispatcher.execute(
            "/bin/x", exit_codes={1: "fine"}, error_translations={1: NoChanges}
        )
        assert outcome.payload == "fine"

    def test_generic_failure(self, dispatcher, spy_spawner):
        """Unlisted codes raise a plain ExecutionFailedError."""
        spy_spawner.will_return(3)
        with pytest.raises(ExecutionFailedError) as excinfo:
            dispatcher.execute("/bin/x", ["--go"], error_translations={1: NoChanges})
        error = excinfo.value
        assert type(error) is ExecutionFailedError
        assert error.exit_code == 3
        assert error.arguments == ("--go",)

    def test_failure_value_round_trip(self, dispatcher, spy_spawner):
        """A Failure value rebuilds the original error kind."""
        spy_spawner.will_return(1)
        with pytest.raises(NoChanges) as excinfo:
            dispatcher.execute("/bin/x", error_translations={1: (NoChanges, {"branch": "b"})})
        failure = Failure.from_error(excinfo.value)
        assert not failure.ok
        rebuilt = failure.to_error()
        assert isinstance(rebuilt, NoChanges)
        assert rebuilt.extra == {"branch": "b"}

    def test_failure_is_logged(self, dispatcher, spy_spawner, captured_logs):
        """Spawn, completion and failure are logged in order."""
        spy_spawner.will_return(2)
        with pytest.raises(ExecutionFailedError):
            dispatcher.execute("/bin/x")
        events = [entry["event"] for entry in captured_logs]
        assert events == ["dispatcher.spawned", "dispatcher.completed", "dispatcher.failed"]
        assert captured_logs[-1]["exit_code"] == 2


class TestCapture:
    """Tests for output capture, discard and forwarding."""

    def test_capture_returns_text(self, dispatcher, spy_spawner):
        """Captured output is returned as text."""
        spy_spawner.will_return(0, b"line one\nline two\n")
        outcome = dispatcher.execute("/bin/cat", output="capture")
        assert spy_spawner.last.stdout is subprocess.PIPE
        assert outcome == Success(True, "line one\nline two\n")

    def test_capture_on_failure_path(self, dispatcher, spy_spawner):
        """Captured output rides on the raised error."""
        spy_spawner.will_return(4, b"partial")
        with pytest.raises(ExecutionFailedError) as excinfo:
            dispatcher.execute("/bin/cat", output=":capture")
        assert excinfo.value.captured_output == "partial"

    def test_discard_by_default(self, dispatcher, spy_spawner):
        """Output goes to the null device unless directed."""
        outcome = dispatcher.execute("/bin/true")
        assert spy_spawner.last.stdout is subprocess.DEVNULL
        assert outcome == Success(True, None)

    def test_stream_without_fd_is_forwarded(self, dispatcher, spy_spawner):
        """In-memory streams receive the output after exit."""
        sink = io.StringIO()
        spy_spawner.will_return(0, b"to the stream\n")
        outcome = dispatcher.execute("/bin/echo", output=sink)
        assert sink.getvalue() == "to the stream\n"
        assert outcome.captured_output is None

    def test_invalid_output_spec_never_spawns(self, dispatcher, spy_spawner):
        """Unknown output directions fail before spawning."""
        with pytest.raises(InvalidOutputSpecError):
            dispatcher.execute("/bin/true", output="elsewhere")
        assert spy_spawner.calls == []

    def test_ambient_capture_scope(self, dispatcher, spy_spawner):
        """output_to() captures for the extent of the block."""
        spy_spawner.will_return(0, b"scoped")
        with ctx.output_to():
            assert dispatcher.execute("/bin/x").captured_output == "scoped"


class TestInputAndEnvironment:
    """Tests for the child's standard input and environment."""

    def test_default_environment(self, dispatcher, spy_spawner, monkeypatch):
        """The configured default environment is used when none is given."""
        from procspine.core.settings import reset_settings

        monkeypatch.setenv("PROCSPINE_DEFAULT_ENVIRONMENT", '["HOME=/tmp/h"]')
        reset_settings()
        dispatcher.execute("/bin/env")
        assert spy_spawner.last.env == {"HOME": "/tmp/h"}

    def test_prepended_entries_shadow(self, dispatcher, spy_spawner):
        """Prepended entries shadow later ones with the same key."""
        with ctx.environment(["A=1"], extend=False), ctx.environment(["A=2", "B=3"]):
            dispatcher.execute("/bin/env")
        assert spy_spawner.last.env == {"A": "2", "B": "3"}

    def test_no_input_is_null_device(self, dispatcher, spy_spawner):
        """Standard input is the null device by default."""
        dispatcher.execute("/bin/cat")
        assert spy_spawner.last.stdin is subprocess.DEVNULL

    def test_data_is_fed_encoded(self, dispatcher, spy_spawner):
        """String input is encoded and written to the child."""
        dispatcher.execute("/bin/cat", input="héllo")
        assert spy_spawner.last.stdin is subprocess.PIPE
        assert spy_spawner.last.process.communicated_input == "héllo".encode()

    def test_path_input_opened_and_closed(self, dispatcher, spy_spawner, tmp_path):
        """Path input is opened for the spawn and closed after."""
        source = tmp_path / "in.txt"
        source.write_text("payload")
        dispatcher.execute("/bin/cat", input=source)
        handle = spy_spawner.last.stdin
        assert handle.name == str(source)
        assert handle.closed

    def test_stream_without_fd_read_into_data(self, dispatcher, spy_spawner):
        """Streams without a descriptor are read and fed as data."""
        dispatcher.execute("/bin/cat", input=io.BytesIO(b"raw"))
        assert spy_spawner.last.process.communicated_input == b"raw"


class TestDryRun:
    """Tests for rehearsal without spawning."""

    def test_never_spawns_and_is_idempotent(self, dispatcher, spy_spawner):
        """Repeated dry runs never spawn and always succeed."""
        with ctx.dry_run():
            outcomes = [dispatcher.execute("/bin/rm", ["-rf", "/srv"]) for _ in range(3)]
        assert spy_spawner.calls == []
        assert outcomes == [Success(True, None)] * 3

    def test_declared_payload_and_empty_capture(self, dispatcher, spy_spawner):
        """Dry run returns the payload for code 0 and empty capture."""
        outcome = dispatcher.execute(
            "/bin/x", dry_run=True, exit_codes={0: "rehearsed"}, output="capture"
        )
        assert outcome == Success("rehearsed", "")
        assert spy_spawner.calls == []

    def test_dry_run_never_fails(self, dispatcher, spy_spawner):
        """Dry run ignores what the program would have done."""
        spy_spawner.will_return(9)
        assert dispatcher.execute("/bin/false", dry_run=True).ok

    def test_traces_invocation(self, dispatcher, trace):
        """Dry run echoes the explanation and the invocation."""
        with ctx.explain("Removing {}", "/srv"):
            dispatcher.execute("/bin/rm", ["-rf", "/srv"], dry_run=True, environment=["HOME=/h"])
        lines = trace.getvalue().splitlines()
        assert lines[0] == "# Removing /srv"
        assert lines[1] == "$ /bin/rm -rf /srv  env=[HOME=/h] output=discard (dry run)"


class TestTrace:
    """Tests for the human-readable trace channel."""

    def test_quiet_by_default(self, dispatcher, trace):
        """Nothing is traced unless a trace mode is on."""
        with ctx.explain("Hidden"):
            dispatcher.execute("/bin/true")
        assert trace.getvalue() == ""

    def test_explanatory_echoes_only_explanation(self, dispatcher, trace):
        """Explanatory mode echoes the explanation alone."""
        with ctx.explanatory(), ctx.explain("Building {}", "docs"):
            dispatcher.execute("/usr/bin/make", ["docs"])
        assert trace.getvalue() == "# Building docs\n"

    def test_verbose_echoes_invocation(self, dispatcher, trace):
        """Verbose mode echoes a shell-quoted invocation."""
        dispatcher.execute("/bin/cp", ["a b", "c"], verbose=True, environment=["X=1"], output="capture")
        assert trace.getvalue() == "$ /bin/cp 'a b' c  env=[X=1] output=capture\n"

    def test_format_invocation_mentions_input_and_async(self):
        """The trace line notes input and async mode."""
        policy = ExecutionPolicy(input=b"abc", asynchronous=True)
        line = format_invocation("/bin/cat", (), ("HOME=/h",), policy)
        assert line.endswith("input=data:3 (async)")

    def test_trace_channel_from_settings(self, spy_spawner, capsys, monkeypatch):
        """PROCSPINE_TRACE_STREAM selects the channel."""
        from procspine.core.settings import reset_settings

        monkeypatch.setenv("PROCSPINE_TRACE_STREAM", "stdout")
        reset_settings()
        Dispatcher(spawner=spy_spawner).execute("/bin/true", verbose=True)
        assert capsys.readouterr().out.startswith("$ /bin/true")

    def test_trace_disabled(self, spy_spawner, capsys, monkeypatch):
        """A channel of none silences tracing."""
        from procspine.core.settings import reset_settings

        monkeypatch.setenv("PROCSPINE_TRACE_STREAM", "none")
        reset_settings()
        Dispatcher(spawner=spy_spawner).execute("/bin/true", dry_run=True)
        captured = capsys.readouterr()
        assert "$ /bin/true" not in captured.out + captured.err


class TestSpawnFailure:
    """Tests for programs that cannot be started."""

    def test_os_error_becomes_spawn_error(self, dispatcher, spy_spawner):
        """OSError from the spawner becomes SpawnError."""
        spy_spawner.error = PermissionError(13, "Permission denied")
        with pytest.raises(SpawnError) as excinfo:
            dispatcher.execute("/etc/passwd", ["x"])
        assert excinfo.value.program == "/etc/passwd"
        assert isinstance(excinfo.value.cause, PermissionError)

    def test_input_file_closed_on_spawn_failure(self, dispatcher, spy_spawner, tmp_path):
        """An opened input file is closed even if spawning fails."""
        source = tmp_path / "in.txt"
        source.write_text("x")
        spy_spawner.error = FileNotFoundError(2, "No such file")
        with pytest.raises(SpawnError):
            dispatcher.execute("/missing", input=source)
        assert spy_spawner.last.stdin.closed


class TestAsynchronous:
    """Tests for ProcessHandle returned by asynchronous execution."""

    def test_returns_handle_without_waiting(self, dispatcher, spy_spawner):
        """Async execution returns a live handle."""
        spy_spawner.will_return(0, b"done\n")
        handle = dispatcher.execute("/bin/x", asynchronous=True, output="capture")
        assert isinstance(handle, ProcessHandle)
        assert not handle.reaped
        assert spy_spawner.last.process.returncode is None

        assert handle.wait() == Success(True, "done\n")
        assert handle.reaped

    def test_wait_maps_failure_and_is_idempotent(self, dispatcher, spy_spawner):
        """wait() re-raises the same error on later calls."""
        spy_spawner.will_return(5)
        handle = dispatcher.execute("/bin/x", asynchronous=True)
        with pytest.raises(ExecutionFailedError) as first:
            handle.wait()
        with pytest.raises(ExecutionFailedError) as second:
            handle.wait()
        assert first.value is second.value

    def test_policy_snapshot_taken_at_spawn(self, dispatcher, spy_spawner):
        """The handle maps with the policy in effect at spawn."""
        spy_spawner.will_return(1)
        with ctx.exit_codes({1: "ok-ish"}):
            handle = dispatcher.execute("/bin/x", asynchronous=True)
        assert handle.wait().payload == "ok-ish"

    def test_iter_lines_then_wait(self, dispatcher, spy_spawner):
        """Streamed lines are still part of the captured output."""
        spy_spawner.will_return(0, b"a\nb\n")
        handle = dispatcher.execute("/bin/x", asynchronous=True, output="capture")
        assert list(handle.iter_lines()) == ["a", "b"]
        assert handle.wait().captured_output == "a\nb\n"

    def test_iter_lines_feeds_input(self, dispatcher, spy_spawner):
        """Pending input is written when streaming starts."""
        handle = dispatcher.execute("/bin/cat", asynchronous=True, output="capture", input="in")
        list(handle.iter_lines())
        assert spy_spawner.last.process.stdin.received == b"in"

    def test_context_manager_reaps(self, dispatcher, spy_spawner):
        """Leaving the block reaps the child."""
        with dispatcher.execute("/bin/x", asynchronous=True) as handle:
            pass
        assert handle.reaped

    def test_context_manager_kills_on_error(self, dispatcher, spy_spawner):
        """An exception in the block kills the child."""
        spy_spawner.will_return(0, hang=True)
        with pytest.raises(RuntimeError):
            with dispatcher.execute("/bin/sleep", ["100"], asynchronous=True):
                raise RuntimeError("caller gave up")
        assert spy_spawner.last.process.killed

    def test_wait_after_aborted_block_reraises(self, dispatcher, spy_spawner):
        """The kill on an aborted block is recorded; a later wait() raises it."""
        spy_spawner.will_return(0, hang=True)
        handle = dispatcher.execute("/bin/sleep", ["100"], asynchronous=True)
        with pytest.raises(RuntimeError):
            with handle:
                raise RuntimeError("caller gave up")

        assert handle.reaped
        with pytest.raises(ExecutionFailedError) as first:
            handle.wait()
        assert first.value.exit_code == -9
        with pytest.raises(ExecutionFailedError) as second:
            handle.wait()
        assert second.value is first.value

    def test_aborted_block_keeps_finished_success(self, dispatcher, spy_spawner):
        """A child that already exited is not killed and keeps its outcome."""
        spy_spawner.will_return(0, b"done\n")
        handle = dispatcher.execute("/bin/x", asynchronous=True, output="capture")
        spy_spawner.last.process.returncode = 0
        with pytest.raises(RuntimeError):
            with handle:
                raise RuntimeError("unrelated")
        assert not spy_spawner.last.process.killed
        assert handle.wait() == Success(True, "done\n")

    def test_iter_lines_not_restartable(self, dispatcher, spy_spawner):
        """A second iteration yields nothing."""
        spy_spawner.will_return(0, b"a\n")
        handle = dispatcher.execute("/bin/x", asynchronous=True, output="capture")
        assert list(handle.iter_lines()) == ["a"]
        assert list(handle.iter_lines()) == []

        assert spy_spawner.last.process.killed


class TestTimeout:
    """Tests for bounded waits."""

    def test_timeout_kills_and_raises(self, dispatcher, spy_spawner):
        """An expired wait kills the child and raises a retryable error."""
        spy_spawner.will_return(0, hang=True)
        with pytest.raises(ExecutionTimeoutError) as excinfo:
            dispatcher.execute("/bin/sleep", ["100"], timeout=0.1)
        assert spy_spawner.last.process.killed
        assert excinfo.value.exit_code == -9
        assert excinfo.value.retryable

    def test_timeout_after_streaming_keeps_lines(self, dispatcher, spy_spawner):
        """Lines already streamed are part of the timeout error's capture."""
        spy_spawner.will_return(0, b"started\n", hang=True)
        handle = dispatcher.execute("/bin/serve", asynchronous=True, output="capture")
        assert list(handle.iter_lines()) == ["started"]

        with pytest.raises(ExecutionTimeoutError) as excinfo:
            handle.wait(timeout=0.1)

        assert spy_spawner.last.process.killed
        assert excinfo.value.captured_output == "started\n"


class TestModuleLevelExecute:
    """Tests for the module-level execute shortcut."""

    def test_uses_default_dispatcher(self, monkeypatch, spy_spawner):
        """execute() goes through the default dispatcher."""
        from procspine.execution import dispatcher as module

        monkeypatch.setattr(module, "_default_dispatcher", Dispatcher(spawner=spy_spawner))
        assert execute("/bin/true") == Success(True)
        assert spy_spawner.last.path == "/bin/true"


@pytest.mark.posix
class TestRealProcesses:
    """End-to-end checks against real child processes."""

    def test_false_raises_generic_failure(self, real_dispatcher):
        """/bin/false maps to a generic failure."""
        with pytest.raises(ExecutionFailedError) as excinfo:
            real_dispatcher.execute("/bin/false", [])
        assert excinfo.value.exit_code == 1
        assert excinfo.value.captured_output is NOT_CAPTURED

    def test_true_succeeds(self, real_dispatcher):
        """/bin/true succeeds with nothing captured."""
        assert real_dispatcher.execute("/bin/true", []) == Success(True, None)

    def test_async_matches_blocking(self, real_dispatcher):
        """Async and blocking runs produce the same outcome."""
        blocking = real_dispatcher.execute("/bin/true", [])
        handle = real_dispatcher.execute("/bin/true", [], asynchronous=True)
        assert isinstance(handle, ProcessHandle)
        assert handle.wait() == blocking

    def test_capture_round_trip_exact_bytes(self, real_dispatcher):
        """Captured text matches what the child wrote."""
        script = "import sys; sys.stdout.write('alpha\\nbeta\\n\\tgamma')"
        outcome = real_dispatcher.execute(sys.executable, ["-c", script], output="capture")
        assert outcome.captured_output == "alpha\nbeta\n\tgamma"

    def test_capture_round_trip_on_failure(self, real_dispatcher):
        """Captured text survives the failure path."""
        script = "import sys; sys.stdout.write('half done'); sys.exit(3)"
        with pytest.raises(ExecutionFailedError) as excinfo:
            real_dispatcher.execute(sys.executable, ["-c", script], output="capture")
        assert excinfo.value.exit_code == 3
        assert excinfo.value.captured_output == "half done"

    def test_input_data_reaches_child(self, real_dispatcher):
        """Input data arrives on the child's stdin."""
        script = "import sys; sys.stdout.write(sys.stdin.read().upper())"
        outcome = real_dispatcher.execute(
            sys.executable, ["-c", script], input="shout", output="capture"
        )
        assert outcome.captured_output == "SHOUT"

    def test_environment_reaches_child(self, real_dispatcher):
        """Environment entries arrive in the child."""
        script = "import os; print(os.environ.get('GREETING'))"
        outcome = real_dispatcher.execute(
            sys.executable, ["-c", script], environment=["GREETING=hi"], output="capture"
        )
        assert outcome.captured_output.strip() == "hi"

    def test_output_to_real_file(self, real_dispatcher, tmp_path):
        """A real file receives output directly."""
        target = tmp_path / "out.txt"
        with open(target, "w") as handle:
            real_dispatcher.execute(sys.executable, ["-c", "print('filed')"], output=handle)
        assert target.read_text() == "filed\n"

    def test_timeout_kills_real_child(self, real_dispatcher):
        """A sleeping child is killed on timeout."""
        with pytest.raises(ExecutionTimeoutError):
            real_dispatcher.execute(
                sys.executable, ["-c", "import time; time.sleep(30)"], timeout=0.5
            )

    def test_missing_program_is_spawn_error(self, real_dispatcher, tmp_path):
        """A nonexistent path raises SpawnError."""
        with pytest.raises(SpawnError):
            real_dispatcher.execute(tmp_path / "does-not-exist")

    def test_undecodable_bytes_round_trip(self, real_dispatcher):
        """Bytes that are not valid UTF-8 come back exactly when re-encoded."""
        script = "import sys; sys.stdout.buffer.write(b'a\\xffb\\xc3')"
        outcome = real_dispatcher.execute(sys.executable, ["-c", script], output="capture")
        assert outcome.captured_output.encode("utf-8", "surrogateescape") == b"a\xffb\xc3"

    def test_undecodable_bytes_round_trip_on_failure(self, real_dispatcher):
        """The failure path keeps undecodable bytes too."""
        script = "import sys; sys.stdout.buffer.write(b'\\x80err'); sys.exit(2)"
        with pytest.raises(ExecutionFailedError) as excinfo:
            real_dispatcher.execute(sys.executable, ["-c", script], output="capture")
        assert excinfo.value.captured_output.encode("utf-8", "surrogateescape") == b"\x80err"

    def test_streaming_large_input_does_not_stall(self, real_dispatcher):
        """A child echoing more input than a pipe holds streams to the end."""
        line = "x" * 99 + "\n"
        data = line * 20_000
        script = "import sys\nfor l in sys.stdin: sys.stdout.write(l)"
        handle = real_dispatcher.execute(
            sys.executable, ["-c", script], input=data, output="capture", asynchronous=True
        )
        lines: list[str] = []
        consumer = threading.Thread(target=lambda: lines.extend(handle.iter_lines()), daemon=True)
        consumer.start()
        consumer.join(timeout=60)
        if consumer.is_alive():
            handle.kill()
            pytest.fail("streaming stalled while feeding input")

        assert len(lines) == 20_000
        outcome = handle.wait(timeout=30)
        assert outcome.captured_output == data

    def test_wait_after_partial_stream(self, real_dispatcher):
        """wait() collects output that iter_lines left unread."""
        script = "for n in range(50000): print(n)"
        handle = real_dispatcher.execute(
            sys.executable, ["-c", script], output="capture", asynchronous=True
        )
        lines = handle.iter_lines()
        assert next(lines) == "0"
        outcome = handle.wait(timeout=30)
        assert outcome.captured_output.splitlines()[-1] == "49999"
        assert len(outcome.captured_output.splitlines()) == 50000
