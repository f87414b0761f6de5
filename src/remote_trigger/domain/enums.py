"""Enumerations describing a remote build's lifecycle."""

from __future__ import annotations

from enum import StrEnum


class BuildStatus(StrEnum):
    """Forward-only lifecycle of a triggered remote build."""

    SUBMITTING = "submitting"
    QUEUED = "queued"
    RUNNING = "running"
    FINISHED = "finished"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = (
    BuildStatus.SUBMITTING,
    BuildStatus.QUEUED,
    BuildStatus.RUNNING,
    BuildStatus.FINISHED,
)


class BuildResult(StrEnum):
    """Outcome of a finished remote build."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    UNSTABLE = "UNSTABLE"
    ABORTED = "ABORTED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_remote(cls, value: object) -> BuildResult:
        """Map the remote's result string, falling back to UNKNOWN."""

        if not isinstance(value, str):
            return cls.UNKNOWN
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.UNKNOWN
