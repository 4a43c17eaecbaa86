"""Executable Registry — symbolic program name → filesystem path.

Manifesto:
The dispatcher is handed names like ``"git"`` or ``"rsync"``. Scanning the
search path for every call is wasteful and makes behaviour depend on when a
binary happened to be installed; the registry resolves a name once, caches
the path, and only re-scans after an explicit ``invalidate`` or ``reset``.

ARCHITECTURE
────────────
::

    ExecutableRegistry
      ├── .lookup(name, search_path)   ─ Ok(path) | Err(ExecutableNotFoundError)
      ├── .require(name, search_path)  ─ path, or raise RequiredExecutableNotFoundError
      ├── .invalidate(name)            ─ drop one cached resolution
      ├── .reset()                     ─ drop all cached resolutions
      └── .cached()                    ─ snapshot of name → path

    get_default_registry()     ─ process-wide singleton
    reset_default_registry()   ─ clear for testing

A miss is a warning, not an error: ``lookup`` logs ``registry.not_found``
and returns the error as a value. Only ``require`` raises.

Tags:
    procspine, execution, registry, executable-lookup

Doc-Types:
    api-reference
"""

from __future__ import annotations

import os
import threading
from collections.abc import Callable, Sequence
from pathlib import Path

from procspine.core.errors import (
    ExecutableNotFoundError,
    RequiredExecutableNotFoundError,
)
from procspine.core.logging import get_logger
from procspine.core.result import Err, Ok, Result
from procspine.core.settings import get_settings

logger = get_logger(__name__)

Probe = Callable[[str], bool]


def probe_executable(path: str) -> bool:
    """Default probe: a regular file the current user may execute."""
    return os.path.isfile(path) and os.access(path, os.X_OK)


def has_path_separator(name: str) -> bool:
    """True if ``name`` is a path rather than a bare program name."""
    return os.sep in name or (os.altsep is not None and os.altsep in name)


class ExecutableRegistry:
    """Injectable, caching executable resolver.

    Example:
        >>> registry = ExecutableRegistry(search_path=["/usr/local/bin", "/usr/bin"])
        >>> registry.require("git")
        PosixPath('/usr/bin/git')
        >>> registry.lookup("no-such-tool").is_err()
        True
    """

    def __init__(
        self,
        search_path: Sequence[str | os.PathLike] | None = None,
        suffixes: Sequence[str] | None = None,
        probe: Probe | None = None,
    ):
        settings = get_settings()
        self._search_path = tuple(
            os.fspath(p) for p in (search_path if search_path is not None else settings.search_path)
        )
        self._suffixes = tuple(suffixes) if suffixes is not None else settings.executable_suffixes
        self._probe = probe or probe_executable
        self._cache: dict[str, Path] = {}
        self._lock = threading.Lock()

    @property
    def search_path(self) -> tuple[str, ...]:
        return self._search_path

    def _candidates(self, name: str, search_path: Sequence[str]) -> list[str]:
        if has_path_separator(name):
            return [name + suffix for suffix in self._suffixes]
        return [
            os.path.join(directory, name + suffix)
            for directory in search_path
            for suffix in self._suffixes
        ]

    def lookup(
        self,
        name: str,
        search_path: Sequence[str | os.PathLike] | None = None,
    ) -> Result[Path]:
        """Resolve ``name`` to a path.

        Args:
            name: Program name (``"git"``) or a path containing a separator,
                which is checked as-is instead of scanned for.
            search_path: Directories to scan in order; defaults to the
                registry's search path.

        Returns:
            ``Ok(path)`` on success, ``Err(ExecutableNotFoundError)`` otherwise.
        """
        with self._lock:
            cached = self._cache.get(name)
        if cached is not None:
            return Ok(cached)

        directories = (
            tuple(os.fspath(p) for p in search_path) if search_path is not None else self._search_path
        )
        for candidate in self._candidates(name, directories):
            if self._probe(candidate):
                path = Path(candidate)
                with self._lock:
                    # first writer wins so concurrent lookups agree
                    path = self._cache.setdefault(name, path)
                logger.debug("registry.resolved", name=name, path=str(path))
                return Ok(path)

        warning = ExecutableNotFoundError(name, directories)
        logger.warning("registry.not_found", name=name, search_path=list(directories))
        return Err(warning)

    def require(
        self,
        name: str,
        search_path: Sequence[str | os.PathLike] | None = None,
    ) -> Path:
        """Resolve ``name`` or raise.

        Raises:
            RequiredExecutableNotFoundError: If no candidate exists.
        """
        result = self.lookup(name, search_path)
        if result.is_err():
            raise RequiredExecutableNotFoundError.from_warning(result.error)
        return result.unwrap()

    def invalidate(self, name: str) -> bool:
        """Forget the cached resolution for ``name``. Returns True if one existed."""
        with self._lock:
            return self._cache.pop(name, None) is not None

    def reset(self) -> None:
        """Forget all cached resolutions."""
        with self._lock:
            self._cache.clear()

    def cached(self) -> dict[str, Path]:
        with self._lock:
            return dict(self._cache)


# === GLOBAL DEFAULT REGISTRY ===

_default_registry: ExecutableRegistry | None = None
_default_lock = threading.Lock()


def get_default_registry() -> ExecutableRegistry:
    """Get the process-wide registry, creating it lazily on first access."""
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = ExecutableRegistry()
        return _default_registry


def reset_default_registry() -> None:
    """Reset the process-wide registry (for testing)."""
    global _default_registry
    with _default_lock:
        _default_registry = None
