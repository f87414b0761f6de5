"""Remote host resolution and job URL construction."""

from __future__ import annotations

from urllib.parse import quote, urlsplit

import httpx

from remote_trigger.exceptions import (
    InvalidUrlError,
    MissingParameterError,
    MissingRemoteHostError,
    UnknownRemoteServerError,
)

from .models import RemoteServer
from .registry import ServerLookup

JOB_PARAMETER = "job"
REMOTE_URL_PARAMETER = "remote_server_url"


def remove_trailing_slashes(value: str) -> str:
    return value.strip().rstrip("/").strip()


def remove_query_parameters(value: str) -> str:
    return value.split("?", 1)[0]


def remove_hash_parameters(value: str) -> str:
    return value.split("#", 1)[0]


def _clean(value: str) -> str:
    return remove_trailing_slashes(remove_hash_parameters(remove_query_parameters(value.strip())))


def is_absolute_url(value: str | None) -> bool:
    """True for http(s) URLs with a host."""

    if not value or not value.strip():
        return False
    try:
        url = httpx.URL(value.strip())
    except (httpx.InvalidURL, TypeError):
        return False
    return url.scheme in {"http", "https"} and bool(url.host)


def server_root(url: str) -> str:
    """scheme://host[:port] of an absolute URL."""

    parts = urlsplit(url.strip())
    # netloc keeps IPv6 brackets, host case and an explicit port as written.
    host_port = parts.netloc.rpartition("@")[2]
    return f"{parts.scheme}://{host_port}"


def evaluate_effective_remote_host(
    job: str | None,
    *,
    override_url: str | None = None,
    server_name: str | None = None,
    lookup: ServerLookup | None = None,
) -> RemoteServer:
    """Resolve the server a trigger talks to.

    Precedence: an absolute job URL, then the override URL, then the named
    server. The named server still contributes its default authorization
    when one of the URL forms supplies the address.
    """

    if not job or not job.strip():
        raise MissingParameterError(
            JOB_PARAMETER,
            "Parameter 'Remote Job Name or URL' ('job' variable) not specified.",
        )

    named = None
    if server_name and server_name.strip() and lookup is not None:
        named = lookup(server_name.strip())
    template = named or RemoteServer(name=server_name.strip() if server_name else None)

    if is_absolute_url(job):
        return template.with_address(server_root(job))

    if override_url and override_url.strip():
        if not is_absolute_url(override_url):
            raise InvalidUrlError(REMOTE_URL_PARAMETER, override_url.strip())
        return template.with_address(remove_trailing_slashes(override_url))

    if server_name and server_name.strip():
        if named is None:
            raise UnknownRemoteServerError(server_name.strip())
        if not named.address.strip():
            raise MissingRemoteHostError(
                f"Remote server '{named.name}' has no address configured."
            )
        return named

    raise MissingRemoteHostError()


def generate_job_url(server: RemoteServer | None, job: str | None) -> str:
    """Build ``<server>/job/<a>/job/<b>`` for job ``a/b``.

    Absolute job URLs are returned cleaned of trailing slashes, query and
    hash suffixes.
    """

    if server is None:
        raise MissingRemoteHostError("Remote server is required to build a job URL.")
    if not job or not job.strip():
        raise MissingParameterError(JOB_PARAMETER)
    if is_absolute_url(job):
        return _clean(job)
    if not server.address or not server.address.strip():
        raise MissingRemoteHostError(f"Remote server '{server.label()}' has no address configured.")
    if not is_absolute_url(server.address):
        raise InvalidUrlError("address", server.address)

    base = _clean(server.address)
    segments = [segment for segment in _clean(job).split("/") if segment.strip()]
    if not segments:
        raise MissingParameterError(JOB_PARAMETER)
    return base + "".join(f"/job/{quote(segment.strip(), safe='')}" for segment in segments)


__all__ = [
    "evaluate_effective_remote_host",
    "generate_job_url",
    "is_absolute_url",
    "remove_hash_parameters",
    "remove_query_parameters",
    "remove_trailing_slashes",
    "server_root",
]
