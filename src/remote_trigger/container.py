"""Service container wiring application components."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from remote_trigger.auth import InMemoryCredentialStore, load_credentials_file
from remote_trigger.config import AppSettings
from remote_trigger.runtime import (
    ClientFactory,
    ConnectionGate,
    CrumbCache,
    JobInfoCache,
    RemoteTransport,
    RemoteTriggerEngine,
)
from remote_trigger.servers import ServerRegistry, load_servers_file

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ServiceContainer:
    """Aggregates the shared services of one process."""

    settings: AppSettings
    server_registry: ServerRegistry
    credential_store: InMemoryCredentialStore
    transport: RemoteTransport
    engine: RemoteTriggerEngine


def build_container(
    settings: AppSettings | None = None,
    *,
    client_factory: ClientFactory | None = None,
) -> ServiceContainer:
    """Construct the primary service container."""

    resolved_settings = settings or AppSettings.from_env()

    registry = ServerRegistry()
    if resolved_settings.servers_file is not None:
        registry.extend(load_servers_file(resolved_settings.servers_file))
        logger.info(
            "Loaded %d remote servers from %s",
            len(registry.list_servers()),
            resolved_settings.servers_file,
        )

    credential_store = InMemoryCredentialStore()
    if resolved_settings.credentials_file is not None:
        credential_store.extend(load_credentials_file(resolved_settings.credentials_file))
        logger.info(
            "Loaded %d credentials from %s",
            len(credential_store),
            resolved_settings.credentials_file,
        )

    transport = RemoteTransport(
        gate=ConnectionGate(resolved_settings.max_connections),
        crumb_cache=CrumbCache(),
        client_factory=client_factory,
        request_timeout=resolved_settings.request_timeout,
        retry_backoff_seconds=resolved_settings.retry_backoff_seconds,
        max_backoff_seconds=resolved_settings.max_backoff_seconds,
    )
    engine = RemoteTriggerEngine(
        server_lookup=registry.lookup,
        credentials=credential_store,
        transport=transport,
        job_info_cache=JobInfoCache(),
    )

    return ServiceContainer(
        settings=resolved_settings,
        server_registry=registry,
        credential_store=credential_store,
        transport=transport,
        engine=engine,
    )


__all__ = ["ServiceContainer", "build_container"]
