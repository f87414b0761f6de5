"""Remote server descriptors, registry and resolution."""

from .models import RemoteServer
from .registry import ServerLookup, ServerRegistry, load_servers_file
from .resolution import (
    evaluate_effective_remote_host,
    generate_job_url,
    is_absolute_url,
    remove_hash_parameters,
    remove_query_parameters,
    remove_trailing_slashes,
    server_root,
)

__all__ = [
    "RemoteServer",
    "ServerLookup",
    "ServerRegistry",
    "evaluate_effective_remote_host",
    "generate_job_url",
    "is_absolute_url",
    "load_servers_file",
    "remove_hash_parameters",
    "remove_query_parameters",
    "remove_trailing_slashes",
    "server_root",
]
