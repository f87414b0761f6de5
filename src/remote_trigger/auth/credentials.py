"""Credential store scoped by identity path."""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from remote_trigger.exceptions import ConfigError

from .base import UsernamePasswordCredential

_CREDENTIALS_ADAPTER = TypeAdapter(list[UsernamePasswordCredential])


def normalize_scope(scope: str | None) -> str:
    return "/".join(part for part in (scope or "").split("/") if part.strip())


def candidate_scopes(identity_path: str | None) -> tuple[str, ...]:
    """Scopes visible to an identity path, most specific first, global last."""

    parts = normalize_scope(identity_path).split("/") if identity_path else []
    parts = [part for part in parts if part]
    scopes = ["/".join(parts[:depth]) for depth in range(len(parts), 0, -1)]
    scopes.append("")
    return tuple(scopes)


@dataclass(slots=True)
class InMemoryCredentialStore:
    """Credentials keyed by (scope, id).

    A credential registered under scope ``teamA`` is visible to
    ``teamA/pipeline`` and everything else below ``teamA``; scope ``""`` is
    global. Lookups prefer the deepest visible scope.
    """

    _entries: dict[tuple[str, str], UsernamePasswordCredential] = field(default_factory=dict)

    def add(self, credential: UsernamePasswordCredential, *, override: bool = False) -> None:
        key = (normalize_scope(credential.scope), credential.id)
        if not override and key in self._entries:
            msg = f"Credential {credential.id} already registered for scope '{key[0]}'"
            raise ValueError(msg)
        self._entries[key] = credential

    def extend(self, credentials: Iterable[UsernamePasswordCredential]) -> None:
        for credential in credentials:
            self.add(credential, override=True)

    def lookup(
        self,
        credential_id: str,
        identity_path: str | None,
    ) -> UsernamePasswordCredential | None:
        for scope in candidate_scopes(identity_path):
            credential = self._entries.get((scope, credential_id))
            if credential is not None:
                return credential
        return None

    def __len__(self) -> int:
        return len(self._entries)


def load_credentials_file(path: Path) -> list[UsernamePasswordCredential]:
    """Read a JSON array of credentials."""

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return _CREDENTIALS_ADAPTER.validate_python(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        msg = f"Unable to load credentials from {path}: {exc}"
        raise ConfigError(msg) from exc


__all__ = [
    "InMemoryCredentialStore",
    "candidate_scopes",
    "load_credentials_file",
    "normalize_scope",
]
