"""Authorization provider variants."""

from __future__ import annotations

import base64
import hashlib
from typing import TYPE_CHECKING, Annotated, Literal

import httpx
from pydantic import Field, SecretStr, field_serializer

from remote_trigger.exceptions import AuthError, CredentialNotFoundError

from .base import AUTHORIZATION_HEADER, AuthProvider

if TYPE_CHECKING:
    from remote_trigger.context import ExecutionContext


def basic_authorization(username: str, secret: str) -> str:
    token = base64.b64encode(f"{username}:{secret}".encode()).decode("ascii")
    return f"Basic {token}"


class NoAuth(AuthProvider):
    """Send requests unauthenticated, removing any header left on the request."""

    kind: Literal["none"] = "none"

    def apply(self, request: httpx.Request, context: ExecutionContext) -> None:
        request.headers.pop(AUTHORIZATION_HEADER, None)

    def describe(self, identity_path: str | None = None) -> str:
        return "'No Authentication'"

    def cache_key(self) -> str:
        return "anonymous"


class UserTokenAuth(AuthProvider):
    """HTTP basic authentication with a user name and API token."""

    kind: Literal["user_token"] = "user_token"
    user_name: str = Field(min_length=1)
    api_token: SecretStr

    @field_serializer("api_token", when_used="json")
    def _dump_token(self, value: SecretStr) -> str:
        return value.get_secret_value()

    def apply(self, request: httpx.Request, context: ExecutionContext) -> None:
        request.headers[AUTHORIZATION_HEADER] = basic_authorization(
            self.user_name, self.api_token.get_secret_value()
        )

    def describe(self, identity_path: str | None = None) -> str:
        return f"'Token Authentication' as user '{self.user_name}'"


class BearerTokenAuth(AuthProvider):
    """Bearer token authentication."""

    kind: Literal["bearer"] = "bearer"
    token: SecretStr

    @field_serializer("token", when_used="json")
    def _dump_token(self, value: SecretStr) -> str:
        return value.get_secret_value()

    def apply(self, request: httpx.Request, context: ExecutionContext) -> None:
        request.headers[AUTHORIZATION_HEADER] = f"Bearer {self.token.get_secret_value()}"

    def describe(self, identity_path: str | None = None) -> str:
        return "'Bearer Token Authentication'"

    def cache_key(self) -> str:
        digest = hashlib.sha256(self.token.get_secret_value().encode()).hexdigest()[:12]
        return f"bearer:{digest}"


class CredentialAuth(AuthProvider):
    """Basic authentication with a credential looked up for the running identity."""

    kind: Literal["credential"] = "credential"
    credential_id: str = Field(min_length=1)

    def apply(self, request: httpx.Request, context: ExecutionContext) -> None:
        store = context.credentials
        if store is None:
            msg = f"No credential store available to resolve credential '{self.credential_id}'"
            raise AuthError(msg)
        credential = store.lookup(self.credential_id, context.identity_path)
        if credential is None:
            raise CredentialNotFoundError(self.credential_id, context.identity_path)
        request.headers[AUTHORIZATION_HEADER] = basic_authorization(
            credential.username, credential.password.get_secret_value()
        )

    def describe(self, identity_path: str | None = None) -> str:
        if identity_path:
            return (
                f"'Credentials Authentication' with credential '{self.credential_id}' "
                f"as seen from '{identity_path}'"
            )
        return f"'Credentials Authentication' with credential '{self.credential_id}'"

    def cache_key(self) -> str:
        return f"credential:{self.credential_id}"


AuthConfig = Annotated[
    NoAuth | UserTokenAuth | BearerTokenAuth | CredentialAuth,
    Field(discriminator="kind"),
]


__all__ = [
    "AuthConfig",
    "BearerTokenAuth",
    "CredentialAuth",
    "NoAuth",
    "UserTokenAuth",
    "basic_authorization",
]
