"""Trigger configuration embedded into every handle."""

from __future__ import annotations

from pydantic import Field, field_validator

from remote_trigger.auth import AuthConfig, AuthProvider, NoAuth
from remote_trigger.domain import DomainModel
from remote_trigger.servers.models import RemoteServer

DEFAULT_POLL_INTERVAL = 10.0
MAX_CONNECTIONS_LIMIT = 5


class TriggerConfiguration(DomainModel):
    """What to trigger, where, and how to follow it."""

    job: str
    remote_server_name: str | None = None
    remote_server_url: str | None = None
    parameters: dict[str, str] = Field(default_factory=dict)
    token: str | None = None
    auth: AuthConfig | None = None
    blocking: bool = True
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, ge=0)
    max_connections: int = Field(default=1, ge=1, le=MAX_CONNECTIONS_LIMIT)
    connection_retry_limit: int = Field(default=5, ge=1)
    abort_on_cancel: bool = False
    prevent_remote_build_queue: bool = False
    enhanced_logging: bool = False
    use_job_info_cache: bool = True
    use_crumb_cache: bool = True
    should_not_fail_build: bool = False
    disabled: bool = False

    @field_validator("remote_server_name", "remote_server_url", "token", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def effective_auth(self, server: RemoteServer) -> AuthProvider:
        """Configured auth wins over the server default; otherwise unauthenticated."""

        if self.auth is not None:
            return self.auth
        if server.auth is not None:
            return server.auth
        return NoAuth()
