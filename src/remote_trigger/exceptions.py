"""Exception hierarchy for remote trigger operations."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from remote_trigger.runtime.handle import Handle


class RemoteTriggerError(RuntimeError):
    """Base class for all remote trigger failures."""


class ConfigError(RemoteTriggerError):
    """Raised when the job, server, URL or execution context is misconfigured."""


class MissingParameterError(ConfigError):
    """Raised when a required parameter is blank."""

    def __init__(self, parameter: str, message: str | None = None) -> None:
        self.parameter = parameter
        super().__init__(message or f"Parameter '{parameter}' not specified.")


class InvalidUrlError(ConfigError):
    """Raised when a configured URL is not an absolute http(s) URL."""

    def __init__(self, parameter: str, value: str) -> None:
        self.parameter = parameter
        self.value = value
        super().__init__(f"The '{parameter}' parameter value ('{value}') is no valid URL")


class UnknownRemoteServerError(ConfigError):
    """Raised when a named remote server is absent from configuration."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Could not get remote host with ID '{name}' from the server configuration. "
            "Please check your configuration."
        )


class MissingRemoteHostError(ConfigError):
    """Raised when no remote host could be resolved."""

    def __init__(self, message: str = "Configuration of the remote host is missing.") -> None:
        super().__init__(message)


class ContextResolutionError(ConfigError):
    """Raised when an execution context has no consistent identity."""


class AuthError(RemoteTriggerError):
    """Raised when credentials cannot be resolved or are rejected."""


class CredentialNotFoundError(AuthError):
    """Raised when a referenced credential is not visible to the identity path."""

    def __init__(self, credential_id: str, identity_path: str) -> None:
        self.credential_id = credential_id
        self.identity_path = identity_path
        super().__init__(
            f"Credential '{credential_id}' not found for '{identity_path}' or any parent scope"
        )


class AuthRejectedError(AuthError):
    """Raised when the remote server answers 401/403."""

    def __init__(self, status_code: int, url: str) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(f"Remote server rejected the credentials ({status_code}) for {url}")


class TransportFailureError(RemoteTriggerError):
    """Raised when connection retries are exhausted."""

    def __init__(self, url: str, attempts: int, reason: str) -> None:
        self.url = url
        self.attempts = attempts
        super().__init__(f"Request to {url} failed after {attempts} attempt(s): {reason}")


class RemoteProtocolError(RemoteTriggerError):
    """Raised when the remote answers with an unexpected status or payload."""


class RemoteRejectedError(RemoteProtocolError):
    """Raised for non-authorization HTTP error statuses."""

    def __init__(self, status_code: int, url: str) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(f"Remote server returned HTTP {status_code} for {url}")


class InvalidTransitionError(RemoteTriggerError):
    """Raised when a build state transition would move backwards."""


class HandleDetachedError(RemoteTriggerError):
    """Raised when a handle needs the network but no engine is attached."""


class RemoteBuildFailedError(RemoteTriggerError):
    """Raised by blocking triggers whose remote build did not succeed."""

    def __init__(self, handle: Handle) -> None:
        self.handle = handle
        super().__init__(
            f"Remote build {handle.build_url or handle.configured_job} finished "
            f"with result {handle.build_result}"
        )


__all__ = [
    "AuthError",
    "AuthRejectedError",
    "ConfigError",
    "ContextResolutionError",
    "CredentialNotFoundError",
    "HandleDetachedError",
    "InvalidTransitionError",
    "InvalidUrlError",
    "MissingParameterError",
    "MissingRemoteHostError",
    "RemoteBuildFailedError",
    "RemoteProtocolError",
    "RemoteRejectedError",
    "RemoteTriggerError",
    "TransportFailureError",
    "UnknownRemoteServerError",
]
