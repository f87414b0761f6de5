"""Authorization layer public exports."""

from .base import AUTHORIZATION_HEADER, AuthProvider, CredentialStore, UsernamePasswordCredential
from .credentials import InMemoryCredentialStore, candidate_scopes, load_credentials_file
from .providers import (
    AuthConfig,
    BearerTokenAuth,
    CredentialAuth,
    NoAuth,
    UserTokenAuth,
    basic_authorization,
)

__all__ = [
    "AUTHORIZATION_HEADER",
    "AuthConfig",
    "AuthProvider",
    "BearerTokenAuth",
    "CredentialAuth",
    "CredentialStore",
    "InMemoryCredentialStore",
    "NoAuth",
    "UserTokenAuth",
    "UsernamePasswordCredential",
    "basic_authorization",
    "candidate_scopes",
    "load_credentials_file",
]
