"""Caller-facing handle to a triggered remote build."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pydantic import Field, PrivateAttr, field_validator

from remote_trigger.domain import BuildResult, BuildStatus, MutableDomainModel, RemoteBuildInfo
from remote_trigger.exceptions import HandleDetachedError
from remote_trigger.servers import RemoteServer

from .configuration import TriggerConfiguration

if TYPE_CHECKING:
    from .engine import RemoteTriggerEngine

logger = logging.getLogger(__name__)

_METADATA_FIELDS = {
    "name": "job_name",
    "fullName": "job_full_name",
    "displayName": "job_display_name",
    "fullDisplayName": "job_full_display_name",
    "url": "job_url",
}


class Handle(MutableDomainModel):
    """Serializable reference to one remote build.

    A handle outlives the call that created it: it can be dumped with
    ``model_dump_json`` at a suspend point and restored with
    ``RemoteTriggerEngine.load_handle`` on another worker. The engine
    reference and the log of the most recent operation are private and never
    serialized.
    """

    configuration: TriggerConfiguration = Field(frozen=True)
    build_info: RemoteBuildInfo = Field(default_factory=RemoteBuildInfo)
    identity_path: str = Field(frozen=True, min_length=1)
    remote_server: RemoteServer = Field(frozen=True)
    job_name: str | None = None
    job_full_name: str | None = None
    job_display_name: str | None = None
    job_full_display_name: str | None = None
    job_url: str | None = None

    _engine: RemoteTriggerEngine | None = PrivateAttr(default=None)
    _last_log: str = PrivateAttr(default="")

    @field_validator("identity_path")
    @classmethod
    def _require_identity(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("identity_path must not be blank")
        return value

    @staticmethod
    def metadata_fields(metadata: Mapping[str, Any]) -> dict[str, str | None]:
        """Map remote job metadata onto handle fields, blank values to None."""

        fields: dict[str, str | None] = {}
        for remote_key, field_name in _METADATA_FIELDS.items():
            value = metadata.get(remote_key)
            text = str(value).strip() if value is not None else ""
            fields[field_name] = text or None
        return fields

    def bind(self, engine: RemoteTriggerEngine) -> None:
        self._engine = engine

    @property
    def engine(self) -> RemoteTriggerEngine:
        if self._engine is None:
            msg = "Handle is not attached to an engine; use RemoteTriggerEngine.load_handle()"
            raise HandleDetachedError(msg)
        return self._engine

    @property
    def configured_job(self) -> str:
        """The job name or URL as configured by the caller."""

        return self.configuration.job

    @property
    def queue_id(self) -> str | None:
        return self.build_info.queue_id

    @property
    def build_url(self) -> str | None:
        return self.build_info.build_url

    @property
    def build_number(self) -> int | None:
        return self.build_info.build_number

    @property
    def build_status(self) -> BuildStatus:
        return self.build_info.status

    @property
    def build_result(self) -> BuildResult | None:
        return self.build_info.result

    def is_queued(self) -> bool:
        return self.build_info.is_queued()

    def is_finished(self) -> bool:
        return self.build_info.is_finished()

    def advance(self, build_info: RemoteBuildInfo) -> None:
        """Adopt a newer state; older observations are ignored."""

        if build_info.status.rank < self.build_info.status.rank:
            logger.debug(
                "Ignoring stale build state %s (current %s)", build_info.status, self.build_status
            )
            return
        self.build_info = build_info

    async def update_build_status(self) -> BuildStatus:
        """Run exactly one poll step unless the build already finished."""

        return await self._update(blocking=False)

    async def update_build_status_blocking(self) -> BuildStatus:
        """Poll until the remote build finished."""

        return await self._update(blocking=True)

    async def _update(self, *, blocking: bool) -> BuildStatus:
        if self.build_info.is_finished():
            return self.build_info.status
        engine = self.engine
        context, buffer = engine.context_for(self.identity_path)
        try:
            return await engine.refresh(self, context, blocking=blocking)
        finally:
            self._last_log = buffer.getvalue()

    async def read_remote_artifact(self, path: str | None) -> Any:
        """Fetch and parse a JSON file archived by the remote build.

        Returns None when no path is given or the build URL is not known yet.
        """

        engine = self.engine
        context, buffer = engine.context_for(self.identity_path)
        try:
            return await engine.read_remote_artifact(self, path, context)
        finally:
            self._last_log = buffer.getvalue()

    def last_log(self) -> str:
        """Return and clear the output of the most recent operation."""

        log = self._last_log.strip()
        self._last_log = ""
        return log

    def __str__(self) -> str:
        return (
            f"Handle [job={self.configured_job}, remoteServerURL={self.remote_server.address}, "
            f"queueId={self.queue_id}, {self.build_info}, buildNumber={self.build_number}, "
            f"buildUrl={self.build_url}]"
        )


__all__ = ["Handle"]
