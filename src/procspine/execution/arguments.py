"""Argument coercion — one declared rule from caller values to argv tokens.

Callers build argument lists from whatever is at hand: strings, ``Path``
objects, counts, and sub-lists assembled by helpers (``["-o", out]``). The
platform spawn primitive only accepts strings, so every argument goes
through :func:`flatten_arguments` before anything is spawned.

Flattening rule
───────────────
::

    str                      → itself
    os.PathLike (Path, ...)  → os.fspath(value)
    int / float (not bool)   → str(value)
    list / tuple             → each element flattened, depth first, in order
    anything else            → InvalidArgumentError (raised before spawning)

``bytes`` are rejected rather than decoded: the encoding of an argv token is
the platform's business, not ours.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from typing import Union

from procspine.core.errors import InvalidArgumentError

Argument = Union[str, int, float, os.PathLike, list["Argument"], tuple["Argument", ...]]


def _walk(value: object, position: str) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, os.PathLike):
        token = os.fspath(value)
        if isinstance(token, bytes):
            raise InvalidArgumentError(f"argument {position} is a bytes path: {value!r}")
        yield token
    elif isinstance(value, bool):
        raise InvalidArgumentError(f"argument {position} is a bool: {value!r}")
    elif isinstance(value, (int, float)):
        yield str(value)
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            yield from _walk(item, f"{position}[{index}]")
    else:
        raise InvalidArgumentError(
            f"argument {position} has no string coercion: {type(value).__name__} {value!r}"
        )


def flatten_arguments(arguments: object) -> tuple[str, ...]:
    """Flatten ``arguments`` into a tuple of string tokens.

    A bare string or path is treated as a single argument, not iterated
    character by character.

    Raises:
        InvalidArgumentError: If any element has no declared coercion.

    Example:
        >>> flatten_arguments(["-C", Path("/srv"), ["log", "-n", 3]])
        ('-C', '/srv', 'log', '-n', '3')
    """
    if arguments is None:
        return ()
    if isinstance(arguments, (str, os.PathLike)):
        return tuple(_walk(arguments, "[0]"))
    if not isinstance(arguments, (list, tuple)):
        raise InvalidArgumentError(
            f"arguments must be a list or tuple, got {type(arguments).__name__}"
        )
    return tuple(_walk(arguments, ""))
