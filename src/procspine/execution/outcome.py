"""Typed outcomes of a completed invocation.

A blocking invocation either returns :class:`Success` or raises an
:class:`~procspine.core.errors.ExecutionFailedError`. :class:`Failure` is the
value form of that error, for orchestration layers that collect outcomes
instead of propagating them (``Failure.from_error(err)``).

.. code-block:: text

    ExecutionOutcome = Success | Failure

    Success(payload, captured_output=None, recovered_from=None)
    Failure(kind, program, arguments, exit_code, captured_output=NOT_CAPTURED)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

from procspine.core.errors import NOT_CAPTURED, ExecutionFailedError

if TYPE_CHECKING:
    from procspine.execution.policy import ExecutionPolicy


@dataclass(frozen=True)
class Success:
    """The exit code was in the valid table.

    ``captured_output`` is ``None`` unless output was capture-mode.
    ``recovered_from`` is set when a recovery policy accepted a failure as a
    successful no-op.
    """

    payload: Any
    captured_output: str | None = None
    recovered_from: ExecutionFailedError | None = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """Value form of an execution failure."""

    kind: type[ExecutionFailedError]
    program: str
    arguments: tuple[str, ...]
    exit_code: int | None
    captured_output: Any = NOT_CAPTURED
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_error(cls, error: ExecutionFailedError) -> Failure:
        return cls(
            kind=type(error),
            program=error.program,
            arguments=error.arguments,
            exit_code=error.exit_code,
            captured_output=error.captured_output,
            extra=dict(error.extra),
        )

    def to_error(self) -> ExecutionFailedError:
        return self.kind(
            program=self.program,
            arguments=self.arguments,
            exit_code=self.exit_code,
            captured_output=self.captured_output,
            **self.extra,
        )


ExecutionOutcome = Union[Success, Failure]


def map_exit_code(
    policy: ExecutionPolicy,
    *,
    program: str,
    arguments: tuple[str, ...],
    exit_code: int,
    captured_output: str | None,
) -> Success:
    """Map an exit code through the policy's tables.

    Returns:
        ``Success`` if ``exit_code`` is in the valid-exit-code table.

    Raises:
        The translated error kind if the error-translation table has an entry,
        otherwise the generic ``ExecutionFailedError``.
    """
    if exit_code in policy.exit_codes:
        return Success(policy.exit_codes[exit_code], captured_output)

    captured = captured_output if captured_output is not None else NOT_CAPTURED
    translation = policy.error_translations.get(exit_code)
    if translation is not None:
        raise translation.build(
            program=program,
            arguments=arguments,
            exit_code=exit_code,
            captured_output=captured,
        )
    raise ExecutionFailedError(
        program=program,
        arguments=arguments,
        exit_code=exit_code,
        captured_output=captured,
    )
