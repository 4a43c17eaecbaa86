"""
Centralized settings for procspine.

Manifesto:
    Defaults that shape every invocation (where executables are searched for,
    which environment a child gets when the caller names none, which program
    carries remote commands) are configuration values, not constants buried
    in the dispatcher. They are validated once, cached, and overridable from
    ``PROCSPINE_*`` environment variables or a ``.env`` file.

The default child environment is deliberately minimal: a single ``HOME``
entry pointing at the temporary directory. Callers that rely on ``PATH``,
locale or credentials must pass an environment explicitly or set
``PROCSPINE_DEFAULT_ENVIRONMENT``.

Tags:
    procspine, configuration, settings, pydantic

Doc-Types:
    api-reference
"""

from __future__ import annotations

import sys
import tempfile
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_environment() -> list[str]:
    return [f"HOME={tempfile.gettempdir()}"]


class ProcSpineSettings(BaseSettings):
    """procspine configuration.

    All fields can be set via ``PROCSPINE_*`` environment variables; list
    fields take JSON (``PROCSPINE_SEARCH_PATH='["/opt/bin", "/usr/bin"]'``).
    """

    model_config = SettingsConfigDict(
        env_prefix="PROCSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Executable lookup ────────────────────────────────────────
    search_path: list[str] = Field(
        default_factory=lambda: ["/usr/bin", "/bin"],
        description="Directories scanned in order by the executable registry",
    )

    # ── Child process defaults ───────────────────────────────────
    default_environment: list[str] = Field(
        default_factory=_default_environment,
        description="KEY=VALUE entries used when a call names no environment",
    )
    encoding: str = Field(default="utf-8", description="Decoding for captured output")

    # ── Remote execution ─────────────────────────────────────────
    remote_transport: str = Field(default="ssh")
    remote_transport_options: list[str] = Field(default_factory=lambda: ["-o", "BatchMode=yes"])

    # ── Observability ────────────────────────────────────────────
    trace_stream: Literal["stderr", "stdout", "none"] = Field(
        default="stderr",
        description="Channel for verbose/explanatory/dry-run trace lines",
    )
    log_level: str = Field(default="WARNING")
    log_format: Literal["json", "console", "auto"] = Field(default="auto")

    @field_validator("default_environment")
    @classmethod
    def _check_environment_entries(cls, value: list[str]) -> list[str]:
        for entry in value:
            if "=" not in entry or entry.startswith("="):
                raise ValueError(f"environment entry must be KEY=VALUE, got {entry!r}")
        return value

    @property
    def executable_suffixes(self) -> tuple[str, ...]:
        if sys.platform == "win32":
            return ("", ".exe", ".bat", ".cmd")
        return ("",)


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: ProcSpineSettings | None = None


def get_settings(*, _force_reload: bool = False) -> ProcSpineSettings:
    """Load, validate, and cache a :class:`ProcSpineSettings` instance."""
    global _settings_cache
    if _settings_cache is None or _force_reload:
        _settings_cache = ProcSpineSettings()
    return _settings_cache


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    global _settings_cache
    _settings_cache = None


__all__ = ["ProcSpineSettings", "get_settings", "reset_settings"]
