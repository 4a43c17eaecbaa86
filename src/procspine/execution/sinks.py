"""Output sinks and input sources — where a child's stdout goes, where stdin comes from.

Output specifications accepted by :func:`resolve_output`::

    True / "inherit" / OutputMode.INHERIT   → the parent's standard output
    False / None / "discard" / DISCARD      → the null device
    "capture" / ":capture" / CAPTURE        → fresh in-memory buffer, returned as str
    a writable stream                       → STREAM, used directly

A stream backed by a real file descriptor is handed to the child as-is. A
stream without one (``io.StringIO``, pytest's capture objects) cannot be
inherited by a child, so its output is piped and written to the stream once
the process completes.

Input specifications accepted by :func:`resolve_input`::

    None / False         → the null device
    True                 → the parent's standard input
    str / bytes          → data fed to the child's stdin
    os.PathLike          → file opened for reading at spawn time
    a readable stream    → used directly (or read into data if it has no fd)

Anything else raises immediately: a bad sink is a configuration error and is
never deferred to process-exit time.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import IO, Any

from procspine.core.errors import InvalidOutputSpecError


class OutputMode(str, Enum):
    """Disposition of a child's standard output."""

    INHERIT = "inherit"
    DISCARD = "discard"
    CAPTURE = "capture"
    STREAM = "stream"


def has_fileno(stream: Any) -> bool:
    """True if ``stream`` is backed by an OS-level file descriptor."""
    try:
        stream.fileno()
    except (AttributeError, OSError, ValueError):
        return False
    return True


@dataclass(frozen=True)
class OutputSink:
    """Resolved output disposition for one invocation."""

    mode: OutputMode
    stream: IO[Any] | None = None

    @property
    def captures(self) -> bool:
        return self.mode is OutputMode.CAPTURE

    @property
    def forwards(self) -> bool:
        """Output is piped and copied to a caller stream after completion."""
        return self.mode is OutputMode.STREAM and not has_fileno(self.stream)

    @property
    def pipes(self) -> bool:
        return self.captures or self.forwards

    def popen_stdout(self) -> Any:
        if self.mode is OutputMode.INHERIT:
            return None
        if self.mode is OutputMode.DISCARD:
            return subprocess.DEVNULL
        if self.pipes:
            return subprocess.PIPE
        return self.stream

    def describe(self) -> str:
        if self.mode is OutputMode.STREAM:
            return f"stream:{getattr(self.stream, 'name', type(self.stream).__name__)}"
        return self.mode.value


INHERIT = OutputSink(OutputMode.INHERIT)
DISCARD = OutputSink(OutputMode.DISCARD)
CAPTURE = OutputSink(OutputMode.CAPTURE)

_NAMED_OUTPUTS = {
    "inherit": INHERIT,
    "discard": DISCARD,
    "capture": CAPTURE,
    ":capture": CAPTURE,
}


def resolve_output(spec: Any) -> OutputSink:
    """Normalise an output specification.

    Raises:
        InvalidOutputSpecError: For anything that is not an accepted form.
    """
    if isinstance(spec, OutputSink):
        return spec
    if spec is True:
        return INHERIT
    if spec is False or spec is None:
        return DISCARD
    if isinstance(spec, OutputMode):
        if spec is OutputMode.STREAM:
            raise InvalidOutputSpecError("OutputMode.STREAM needs a stream; pass the stream itself")
        return _NAMED_OUTPUTS[spec.value]
    if isinstance(spec, str):
        try:
            return _NAMED_OUTPUTS[spec.lower()]
        except KeyError:
            raise InvalidOutputSpecError(
                f"unknown output direction {spec!r}; expected one of {sorted(_NAMED_OUTPUTS)}"
            ) from None
    if callable(getattr(spec, "write", None)):
        return OutputSink(OutputMode.STREAM, spec)
    raise InvalidOutputSpecError(f"invalid output specification: {spec!r}")


@dataclass(frozen=True)
class InputSource:
    """Resolved standard-input source for one invocation."""

    kind: str  # "none" | "inherit" | "data" | "path" | "stream"
    data: bytes | str | None = None
    path: str | None = None
    stream: IO[Any] | None = None

    def describe(self) -> str:
        if self.kind == "path":
            return f"path:{self.path}"
        if self.kind == "data":
            return f"data:{len(self.data or b'')}"
        return self.kind


NO_INPUT = InputSource("none")
INHERIT_INPUT = InputSource("inherit")


def resolve_input(spec: Any) -> InputSource:
    """Normalise an input specification.

    Raises:
        InvalidOutputSpecError: For anything that is not an accepted form.
    """
    if isinstance(spec, InputSource):
        return spec
    if spec is None or spec is False:
        return NO_INPUT
    if spec is True:
        return INHERIT_INPUT
    if isinstance(spec, (str, bytes)):
        return InputSource("data", data=spec)
    if isinstance(spec, os.PathLike):
        return InputSource("path", path=os.fspath(spec))
    if callable(getattr(spec, "read", None)):
        return InputSource("stream", stream=spec)
    raise InvalidOutputSpecError(f"invalid input specification: {spec!r}")
