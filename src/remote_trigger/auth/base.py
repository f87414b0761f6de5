"""Authorization provider contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx
from pydantic import SecretStr, field_serializer

from remote_trigger.domain.base import DomainModel

if TYPE_CHECKING:
    from remote_trigger.context import ExecutionContext

AUTHORIZATION_HEADER = "Authorization"


class UsernamePasswordCredential(DomainModel):
    """Stored username/password (or username/API token) pair."""

    id: str
    username: str
    password: SecretStr
    scope: str = ""
    description: str | None = None

    @field_serializer("password", when_used="json")
    def _dump_password(self, value: SecretStr) -> str:
        return value.get_secret_value()


@runtime_checkable
class CredentialStore(Protocol):
    """Lookup capability for credentials visible to an identity path."""

    def lookup(
        self,
        credential_id: str,
        identity_path: str | None,
    ) -> UsernamePasswordCredential | None: ...


class AuthProvider(DomainModel, ABC):
    """Strategy that sets, or actively clears, a request's authorization header.

    Providers are stateless and reusable across requests. ``describe`` never
    reveals secrets and is what ``str()`` returns.
    """

    @abstractmethod
    def apply(self, request: httpx.Request, context: ExecutionContext) -> None:
        """Mutate the outbound request's authorization header."""

    @abstractmethod
    def describe(self, identity_path: str | None = None) -> str:
        """Human-readable, credential-redacted description."""

    def cache_key(self) -> str:
        """Identity of the remote user this provider authenticates as."""

        return self.describe()

    def __str__(self) -> str:
        return self.describe()
