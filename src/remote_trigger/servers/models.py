"""Remote server descriptor."""

from __future__ import annotations

from pydantic import Field

from remote_trigger.auth import AuthConfig
from remote_trigger.domain import DomainModel


class RemoteServer(DomainModel):
    """Address and default authorization of a remote build server.

    Resolved once per trigger and embedded by value into the handle, so later
    polling never depends on the server still being configured under its name.
    """

    name: str | None = None
    address: str = ""
    auth: AuthConfig | None = Field(default=None)

    def with_address(self, address: str) -> RemoteServer:
        return self.revalidated(address=address)

    def label(self) -> str:
        return self.name or self.address
