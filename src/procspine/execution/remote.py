"""Remote Execution Front — run a command on another host through the dispatcher.

The front only assembles the outer invocation::

    <transport> <transport options...> <host> <quoted remote command line>
    ssh -o BatchMode=yes build-01 'make -C /srv/app test'

Quoting the remote command for the remote shell is the job of the ``quote``
collaborator (:func:`shlex.join` by default, POSIX shell rules). A command
given as a single string is taken to be a ready shell command line and is
passed through unquoted.

Because the invocation runs through :class:`~procspine.execution.dispatcher.Dispatcher`,
remote commands get the same exit-code tables, error translations, capture
semantics, dry-run rehearsal and trace output as local ones.
"""

from __future__ import annotations

import shlex
from collections.abc import Callable, Iterator, Sequence
from typing import Any

from procspine.core.errors import ExecutionFailedError
from procspine.core.logging import get_logger
from procspine.core.settings import get_settings
from procspine.execution.arguments import flatten_arguments
from procspine.execution.dispatcher import CommandDescriptor, Dispatcher, get_default_dispatcher
from procspine.execution.outcome import Success
from procspine.execution.policy import current_policy
from procspine.execution.registry import has_path_separator
from procspine.execution.sinks import OutputMode
from procspine.execution.spawner import ProcessHandle

logger = get_logger(__name__)

Quoter = Callable[[Sequence[str]], str]


def _is_dry_run(overrides: dict[str, Any]) -> bool:
    return current_policy(**overrides).dry_run


class RemoteFront:
    """Builds transport invocations and threads them through a dispatcher.

    Parameters
    ----------
    transport : str, optional
        Transport program name or path; defaults to ``settings.remote_transport``.
    transport_options : sequence of str, optional
        Arguments placed before the host; defaults to
        ``settings.remote_transport_options``.
    quote : callable, optional
        Turns the remote command tokens into one shell command line.
    dispatcher : Dispatcher, optional
    """

    def __init__(
        self,
        transport: str | None = None,
        transport_options: Sequence[str] | None = None,
        quote: Quoter = shlex.join,
        dispatcher: Dispatcher | None = None,
    ):
        settings = get_settings()
        self.transport = transport or settings.remote_transport
        self.transport_options = tuple(
            transport_options if transport_options is not None else settings.remote_transport_options
        )
        self._quote = quote
        self._dispatcher = dispatcher

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher or get_default_dispatcher()

    def remote_command_line(self, command: Any) -> str:
        if isinstance(command, str):
            return command
        return self._quote(flatten_arguments(command))

    def command_line(
        self, host: str, command: Any, *, dry_run: bool = False
    ) -> tuple[CommandDescriptor, tuple[str, ...]]:
        """The local invocation (target, arguments) that runs ``command`` on ``host``.

        A transport given by name must be on the search path, except in a dry
        run, where a missing transport is traced by its bare name.
        """
        if not host or host.startswith("-"):
            raise ValueError(f"invalid remote host {host!r}")
        transport_path = self.transport
        if not has_path_separator(transport_path):
            registry = self.dispatcher.registry
            if dry_run:
                transport_path = str(registry.lookup(transport_path).unwrap_or(transport_path))
            else:
                transport_path = str(registry.require(transport_path))
        target = CommandDescriptor(transport_path, self.transport_options)
        return target, (host, self.remote_command_line(command))

    def run_remote(self, host: str, command: Any, **overrides: Any) -> Success:
        """Run ``command`` on ``host`` and wait for it.

        Takes the same policy overrides as ``Dispatcher.execute``; the call
        is always blocking.
        """
        target, arguments = self.command_line(host, command, dry_run=_is_dry_run(overrides))
        logger.debug("remote.run", host=host, transport=target.path)
        overrides["asynchronous"] = False
        try:
            return self.dispatcher.execute(target, list(arguments), **overrides)
        except ExecutionFailedError as error:
            error.with_context(host=host)
            raise

    def watch_remote(self, host: str, command: Any, **overrides: Any) -> Iterator[str]:
        """Lazily yield the remote command's output lines as they arrive.

        Finite: ends when the remote command exits. If it exited with a
        failing code, the mapped error is raised after the last line. Yields
        nothing in dry-run mode. Not restartable.
        """
        target, arguments = self.command_line(host, command, dry_run=_is_dry_run(overrides))
        overrides["asynchronous"] = True
        overrides["output"] = OutputMode.CAPTURE
        logger.debug("remote.watch", host=host, transport=target.path)
        result = self.dispatcher.execute(target, list(arguments), **overrides)
        if not isinstance(result, ProcessHandle):
            return
        with result as handle:
            yield from handle.iter_lines()
            try:
                handle.wait()
            except ExecutionFailedError as error:
                error.with_context(host=host)
                raise


_default_front: RemoteFront | None = None


def _front() -> RemoteFront:
    global _default_front
    if _default_front is None:
        _default_front = RemoteFront()
    return _default_front


def run_remote(host: str, command: Any, **overrides: Any) -> Success:
    """Module-level :meth:`RemoteFront.run_remote` with configured defaults."""
    return _front().run_remote(host, command, **overrides)


def watch_remote(host: str, command: Any, **overrides: Any) -> Iterator[str]:
    """Module-level :meth:`RemoteFront.watch_remote` with configured defaults."""
    return _front().watch_remote(host, command, **overrides)


def reset_default_front() -> None:
    """Reset the module-level front (for testing)."""
    global _default_front
    _default_front = None
