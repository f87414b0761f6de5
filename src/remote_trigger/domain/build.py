"""Remote build state machine."""

from __future__ import annotations

from pydantic import Field, model_validator

from remote_trigger.exceptions import InvalidTransitionError

from .base import DomainModel
from .enums import BuildResult, BuildStatus


class RemoteBuildInfo(DomainModel):
    """Authoritative, forward-only record of a remote build.

    Instances are immutable. Every transition returns a new instance so a
    failed refresh can never leave a half-updated record behind. Fields are
    carried over on each transition and are never unset once populated.
    """

    status: BuildStatus = BuildStatus.SUBMITTING
    queue_id: str | None = None
    build_number: int | None = Field(default=None, ge=1)
    build_url: str | None = None
    result: BuildResult | None = None

    @model_validator(mode="after")
    def _check_consistency(self) -> RemoteBuildInfo:
        if self.status is BuildStatus.FINISHED:
            if self.result is None:
                raise ValueError("finished builds require a result")
        elif self.result is not None:
            raise ValueError(f"result is only allowed once finished (status={self.status})")
        if self.status is BuildStatus.QUEUED and self.queue_id is None:
            raise ValueError("queued builds require a queue id")
        if self.status is BuildStatus.RUNNING and (
            self.build_number is None or self.build_url is None
        ):
            raise ValueError("running builds require a build number and url")
        return self

    def is_queued(self) -> bool:
        return self.status is BuildStatus.QUEUED

    def is_running(self) -> bool:
        return self.status is BuildStatus.RUNNING

    def is_finished(self) -> bool:
        return self.status is BuildStatus.FINISHED

    def queued(self, queue_id: str) -> RemoteBuildInfo:
        """Record the queue reference returned by a successful submission."""

        if self.status is BuildStatus.QUEUED and self.queue_id == queue_id:
            return self
        if self.status is not BuildStatus.SUBMITTING:
            msg = f"Cannot move build from {self.status} to {BuildStatus.QUEUED}"
            raise InvalidTransitionError(msg)
        return self.revalidated(status=BuildStatus.QUEUED, queue_id=queue_id)

    def running(self, build_number: int, build_url: str) -> RemoteBuildInfo:
        """Record the build the queue item resolved to. QUEUED may be skipped."""

        if self.status is BuildStatus.RUNNING and self.build_number == build_number:
            return self
        if self.status.rank > BuildStatus.QUEUED.rank:
            msg = (
                f"Cannot move build #{self.build_number} from {self.status} "
                f"to {BuildStatus.RUNNING} (#{build_number})"
            )
            raise InvalidTransitionError(msg)
        return self.revalidated(
            status=BuildStatus.RUNNING,
            build_number=build_number,
            build_url=build_url,
        )

    def finished(self, result: BuildResult) -> RemoteBuildInfo:
        """Record the terminal outcome. The result never changes afterwards."""

        if self.status is BuildStatus.FINISHED:
            if self.result is result:
                return self
            msg = f"Build already finished with {self.result}; refusing {result}"
            raise InvalidTransitionError(msg)
        return self.revalidated(status=BuildStatus.FINISHED, result=result)

    def __str__(self) -> str:
        if self.result is not None:
            return f"status={self.status.name}, result={self.result.value}"
        return f"status={self.status.name}"
