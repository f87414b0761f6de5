"""Registry of named remote servers."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from remote_trigger.exceptions import ConfigError

from .models import RemoteServer

ServerLookup = Callable[[str], RemoteServer | None]

_SERVERS_ADAPTER = TypeAdapter(list[RemoteServer])


@dataclass(slots=True)
class ServerRegistry:
    """Runtime registry mapping server names to descriptors."""

    _servers: dict[str, RemoteServer] = field(default_factory=dict)

    def register(self, server: RemoteServer, *, override: bool = False) -> None:
        if not server.name:
            raise ValueError("Registered servers need a name")
        if not override and server.name in self._servers:
            existing = self._servers[server.name]
            msg = f"Remote server {server.name} already registered ({existing.address})"
            raise ValueError(msg)
        self._servers[server.name] = server

    def extend(self, servers: Iterable[RemoteServer]) -> None:
        for server in servers:
            self.register(server, override=True)

    def lookup(self, name: str) -> RemoteServer | None:
        """Exact-name lookup; the capability handed to server resolution."""

        return self._servers.get(name)

    def list_servers(self) -> tuple[RemoteServer, ...]:
        return tuple(self._servers.values())


def load_servers_file(path: Path) -> list[RemoteServer]:
    """Read a JSON array of server descriptors."""

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return _SERVERS_ADAPTER.validate_python(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        msg = f"Unable to load remote servers from {path}: {exc}"
        raise ConfigError(msg) from exc


__all__ = ["ServerLookup", "ServerRegistry", "load_servers_file"]
