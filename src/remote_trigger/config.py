"""Lightweight application configuration loader."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_path(name: str) -> Path | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return Path(raw.strip()).expanduser()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass(frozen=True)
class AppSettings:
    """Immutable configuration sourced from environment variables."""

    environment: str = "development"
    servers_file: Path | None = None
    credentials_file: Path | None = None
    ambient_identity: str | None = None
    max_connections: int = 5
    request_timeout: float = 30.0
    retry_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> AppSettings:
        return cls(
            environment=os.getenv("REMOTE_TRIGGER_ENV", cls.environment),
            servers_file=_env_path("REMOTE_TRIGGER_SERVERS_FILE"),
            credentials_file=_env_path("REMOTE_TRIGGER_CREDENTIALS_FILE"),
            ambient_identity=os.getenv("JOB_NAME") or None,
            max_connections=_env_int("REMOTE_TRIGGER_MAX_CONNECTIONS", cls.max_connections),
            request_timeout=_env_float("REMOTE_TRIGGER_REQUEST_TIMEOUT", cls.request_timeout),
            retry_backoff_seconds=_env_float(
                "REMOTE_TRIGGER_RETRY_BACKOFF", cls.retry_backoff_seconds
            ),
            max_backoff_seconds=_env_float("REMOTE_TRIGGER_MAX_BACKOFF", cls.max_backoff_seconds),
            log_level=os.getenv("REMOTE_TRIGGER_LOG_LEVEL", cls.log_level).upper(),
        )


__all__ = ["AppSettings"]
