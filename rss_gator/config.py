from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from .exceptions import ConfigError


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///gator.sqlite3"
    current_user: Optional[str] = None
    user_agent: str = "gator"
    request_timeout: float = 15.0
    batch_size: int = 10
    pacing_seconds: float = 1.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, *, dotenv: bool = True) -> "Settings":
        """
        Build settings from GATOR_* environment variables.

        A `.env` file in the working directory is loaded first unless
        `dotenv` is False; variables already set in the environment win.
        """
        if environ is None:
            if dotenv:
                load_dotenv(find_dotenv(usecwd=True))
            environ = os.environ

        defaults = cls()
        return cls(
            database_url=environ.get("GATOR_DATABASE_URL") or defaults.database_url,
            current_user=environ.get("GATOR_USER") or None,
            user_agent=environ.get("GATOR_USER_AGENT") or defaults.user_agent,
            request_timeout=_number(environ, "GATOR_REQUEST_TIMEOUT", defaults.request_timeout),
            batch_size=int(_number(environ, "GATOR_BATCH_SIZE", defaults.batch_size, integer=True)),
            pacing_seconds=_number(environ, "GATOR_PACING_SECONDS", defaults.pacing_seconds, positive=False),
            log_level=(environ.get("GATOR_LOG_LEVEL") or defaults.log_level).upper(),
        )

    def with_overrides(self, **changes) -> "Settings":
        """Return a copy with every non-None keyword applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _number(environ: Mapping[str, str], key: str, default: float, *,
            integer: bool = False, positive: bool = True) -> float:
    raw = environ.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw) if integer else float(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from e
    if value < 0 or (positive and value == 0):
        raise ConfigError(f"{key} is out of range: {raw!r}")
    return value
