"""Execution context: who is running a trigger and where its output goes."""

from __future__ import annotations

import io
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TextIO

from remote_trigger.auth import CredentialStore
from remote_trigger.exceptions import ContextResolutionError

logger = logging.getLogger(__name__)

LogListener = Callable[[str], None]


def _trim_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """Immutable bundle passed to authorization providers and the engine.

    ``identity_path`` scopes credential visibility. ``output`` receives the
    caller-facing log lines; it may be a throwaway buffer when a handle is
    refreshed from a context where the original sink no longer exists.
    """

    identity_path: str
    output: TextIO
    listener: LogListener | None = None
    credentials: CredentialStore | None = None

    def __post_init__(self) -> None:
        if _trim_to_none(self.identity_path) is None:
            raise ContextResolutionError("Execution context requires a non-blank identity path")
        if self.output is None:
            raise ContextResolutionError("Execution context requires an output stream")

    def log(self, message: str) -> None:
        """Write a line to the caller-facing output."""

        self.output.write(message + "\n")
        self.output.flush()
        if self.listener is not None:
            self.listener(message)
        logger.debug("[%s] %s", self.identity_path, message)

    @classmethod
    def detached(
        cls,
        identity_path: str,
        *,
        credentials: CredentialStore | None = None,
    ) -> tuple[ExecutionContext, io.StringIO]:
        """Minimal context with a fresh in-memory sink, used for handle refreshes."""

        buffer = io.StringIO()
        return cls(identity_path=identity_path, output=buffer, credentials=credentials), buffer


def resolve_identity(declared: str | None, ambient: str | None) -> str:
    """Reconcile the caller's declared identity with the ambient running job.

    Both present and different is fatal; that would let a caller borrow
    another job's credential scope.
    """

    declared_path = _trim_to_none(declared)
    ambient_path = _trim_to_none(ambient)
    if declared_path is not None and ambient_path is not None:
        if declared_path != ambient_path:
            msg = (
                f"Current item ('{declared_path}') and parent item of the running job "
                f"('{ambient_path}') differ!"
            )
            raise ContextResolutionError(msg)
        return declared_path
    if declared_path is not None:
        return declared_path
    if ambient_path is not None:
        return ambient_path
    raise ContextResolutionError(
        "Neither a current item nor a running job identity was supplied"
    )


def resolve_execution_context(
    declared_identity: str | None,
    ambient_identity: str | None,
    *,
    output: TextIO,
    listener: LogListener | None = None,
    credentials: CredentialStore | None = None,
) -> ExecutionContext:
    """Build the context for one trigger invocation."""

    return ExecutionContext(
        identity_path=resolve_identity(declared_identity, ambient_identity),
        output=output,
        listener=listener,
        credentials=credentials,
    )


__all__ = [
    "ExecutionContext",
    "LogListener",
    "resolve_execution_context",
    "resolve_identity",
]
