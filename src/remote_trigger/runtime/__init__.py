"""Trigger engine, transport and handle."""

from .caches import Crumb, CrumbCache, CrumbKey, JobInfoCache
from .configuration import DEFAULT_POLL_INTERVAL, MAX_CONNECTIONS_LIMIT, TriggerConfiguration
from .engine import RemoteTriggerEngine, extract_queue_id
from .handle import Handle
from .transport import ClientFactory, ConnectionGate, RemoteTransport, RequestPolicy

__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "MAX_CONNECTIONS_LIMIT",
    "ClientFactory",
    "ConnectionGate",
    "Crumb",
    "CrumbCache",
    "CrumbKey",
    "Handle",
    "JobInfoCache",
    "RemoteTransport",
    "RemoteTriggerEngine",
    "RequestPolicy",
    "TriggerConfiguration",
    "extract_queue_id",
]
