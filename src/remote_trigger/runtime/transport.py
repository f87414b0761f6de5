"""HTTP transport for the remote server: auth, crumbs, retries, admission control."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from remote_trigger.auth import AuthProvider
from remote_trigger.context import ExecutionContext
from remote_trigger.exceptions import (
    AuthRejectedError,
    RemoteProtocolError,
    RemoteRejectedError,
    TransportFailureError,
)
from remote_trigger.servers import RemoteServer
from remote_trigger.servers.resolution import (
    remove_hash_parameters,
    remove_query_parameters,
    remove_trailing_slashes,
)

from .caches import Crumb, CrumbCache, CrumbKey

if TYPE_CHECKING:
    from .configuration import TriggerConfiguration

logger = logging.getLogger(__name__)

AUTH_FAILURE_CODES = frozenset({401, 403})
CRUMB_ISSUER_PATH = "/crumbIssuer/api/json"

ClientFactory = Callable[[], httpx.AsyncClient]
Sleeper = Callable[[float], Awaitable[None]]


def server_base(server: RemoteServer) -> str:
    return remove_trailing_slashes(remove_hash_parameters(remove_query_parameters(server.address)))


def decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        msg = f"Remote server returned invalid JSON for {response.request.url}"
        raise RemoteProtocolError(msg) from exc


@dataclass(frozen=True, slots=True)
class RequestPolicy:
    """Per-trigger knobs applied to every request."""

    max_connections: int = 1
    retry_limit: int = 5
    use_crumb_cache: bool = True

    @classmethod
    def from_configuration(cls, configuration: TriggerConfiguration) -> RequestPolicy:
        return cls(
            max_connections=configuration.max_connections,
            retry_limit=configuration.connection_retry_limit,
            use_crumb_cache=configuration.use_crumb_cache,
        )


class ConnectionGate:
    """Admission control shared by every request an engine issues.

    A request is admitted while fewer than ``min(capacity, limit)`` requests
    are in flight, so a trigger asking for a lower limit also waits behind
    traffic from other triggers.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("ConnectionGate capacity must be at least 1")
        self._capacity = capacity
        self._active = 0
        self._condition: asyncio.Condition | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def active(self) -> int:
        return self._active

    def _condition_for_loop(self) -> asyncio.Condition:
        loop = asyncio.get_running_loop()
        if self._condition is None or self._loop is not loop:
            # Slots held on a previous (closed) loop are gone with it.
            self._condition = asyncio.Condition()
            self._loop = loop
            self._active = 0
        return self._condition

    @asynccontextmanager
    async def slot(self, limit: int | None = None) -> AsyncIterator[None]:
        bound = self._capacity if limit is None else max(1, min(limit, self._capacity))
        condition = self._condition_for_loop()
        async with condition:
            await condition.wait_for(lambda: self._active < bound)
            self._active += 1
        try:
            yield
        finally:
            async with condition:
                self._active -= 1
                condition.notify_all()


class RemoteTransport:
    """Issues authorized requests against a remote build server."""

    def __init__(
        self,
        *,
        gate: ConnectionGate,
        crumb_cache: CrumbCache | None = None,
        client_factory: ClientFactory | None = None,
        request_timeout: float = 30.0,
        retry_backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 30.0,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._gate = gate
        self._crumbs = crumb_cache or CrumbCache()
        self._client_factory = client_factory
        self._request_timeout = request_timeout
        self._retry_backoff_seconds = retry_backoff_seconds
        self._max_backoff_seconds = max_backoff_seconds
        self._sleep = sleep

    @property
    def gate(self) -> ConnectionGate:
        return self._gate

    @property
    def crumb_cache(self) -> CrumbCache:
        return self._crumbs

    @asynccontextmanager
    async def session(self) -> AsyncIterator[httpx.AsyncClient]:
        """One client per engine operation so crumbs and session cookies line up."""

        if self._client_factory is not None:
            async with self._client_factory() as client:
                yield client
            return
        async with httpx.AsyncClient(timeout=self._request_timeout) as client:
            yield client

    async def get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        *,
        context: ExecutionContext,
        server: RemoteServer,
        auth: AuthProvider,
        policy: RequestPolicy,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        response = await self.request(
            client,
            "GET",
            url,
            context=context,
            server=server,
            auth=auth,
            policy=policy,
            params=params,
        )
        return decode_json(response)

    async def get_text(
        self,
        client: httpx.AsyncClient,
        url: str,
        *,
        context: ExecutionContext,
        server: RemoteServer,
        auth: AuthProvider,
        policy: RequestPolicy,
    ) -> str:
        response = await self.request(
            client, "GET", url, context=context, server=server, auth=auth, policy=policy
        )
        return response.text

    async def request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        *,
        context: ExecutionContext,
        server: RemoteServer,
        auth: AuthProvider,
        policy: RequestPolicy,
        params: Mapping[str, str] | None = None,
        data: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Send one logical request, retrying connection failures with backoff."""

        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._request_once(
                    client, method, url, context, server, auth, policy, params, data
                )
            except httpx.TransportError as exc:
                reason = str(exc) or type(exc).__name__
                if attempt >= policy.retry_limit:
                    raise TransportFailureError(url, attempt, reason) from exc
                delay = self._backoff(attempt)
                logger.warning(
                    "Connection to %s failed (%s); retry %d/%d in %.1fs",
                    url,
                    reason,
                    attempt,
                    policy.retry_limit - 1,
                    delay,
                )
                context.log(f"Connection to remote server failed ({reason}), retrying in {delay:.1f}s")
                await self._sleep(delay)

    def _backoff(self, attempt: int) -> float:
        return min(self._retry_backoff_seconds * 2 ** (attempt - 1), self._max_backoff_seconds)

    async def _request_once(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        context: ExecutionContext,
        server: RemoteServer,
        auth: AuthProvider,
        policy: RequestPolicy,
        params: Mapping[str, str] | None,
        data: Mapping[str, str] | None,
    ) -> httpx.Response:
        crumb: Crumb | None = None
        from_cache = False
        if method.upper() == "POST":
            crumb, from_cache = await self._crumb(client, context, server, auth, policy)

        response = await self._dispatch(client, method, url, context, auth, policy, params, data, crumb)
        if response.status_code in AUTH_FAILURE_CODES and from_cache:
            logger.warning("Cached crumb for %s rejected; fetching a new one", server.address)
            context.log("Cached crumb was rejected, requesting a new one")
            crumb, _ = await self._crumb(client, context, server, auth, policy, force=True)
            response = await self._dispatch(
                client, method, url, context, auth, policy, params, data, crumb
            )
        return self._check(response)

    async def _dispatch(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        context: ExecutionContext,
        auth: AuthProvider,
        policy: RequestPolicy,
        params: Mapping[str, str] | None,
        data: Mapping[str, str] | None,
        crumb: Crumb | None,
    ) -> httpx.Response:
        request = client.build_request(
            method,
            url,
            params=dict(params) if params else None,
            data=dict(data) if data else None,
        )
        # Applied after build_request so client-level default headers cannot leak through.
        auth.apply(request, context)
        if crumb is not None:
            request.headers[crumb.field] = crumb.value
        logger.debug("%s %s", method, request.url)
        async with self._gate.slot(policy.max_connections):
            return await client.send(request)

    @staticmethod
    def _check(response: httpx.Response) -> httpx.Response:
        url = str(response.request.url)
        if response.status_code in AUTH_FAILURE_CODES:
            raise AuthRejectedError(response.status_code, url)
        if response.status_code >= 400:
            raise RemoteRejectedError(response.status_code, url)
        return response

    async def _crumb(
        self,
        client: httpx.AsyncClient,
        context: ExecutionContext,
        server: RemoteServer,
        auth: AuthProvider,
        policy: RequestPolicy,
        *,
        force: bool = False,
    ) -> tuple[Crumb | None, bool]:
        if not policy.use_crumb_cache:
            return await self._fetch_crumb(client, context, server, auth, policy), False

        key = CrumbKey(server_base(server), context.identity_path, auth.cache_key())
        async with self._crumbs.lock(key):
            if force:
                self._crumbs.invalidate(key)
            else:
                entry = self._crumbs.get(key)
                if entry is not None:
                    return entry.crumb, True
            crumb = await self._fetch_crumb(client, context, server, auth, policy)
            self._crumbs.store(key, crumb)
            return crumb, False

    async def _fetch_crumb(
        self,
        client: httpx.AsyncClient,
        context: ExecutionContext,
        server: RemoteServer,
        auth: AuthProvider,
        policy: RequestPolicy,
    ) -> Crumb | None:
        url = server_base(server) + CRUMB_ISSUER_PATH
        response = await self._dispatch(client, "GET", url, context, auth, policy, None, None, None)
        if response.status_code == 404:
            return None
        payload = decode_json(self._check(response))
        if not isinstance(payload, Mapping):
            raise RemoteProtocolError(f"Unexpected crumb payload from {url}")
        field_name = payload.get("crumbRequestField")
        value = payload.get("crumb")
        if not field_name or not value:
            raise RemoteProtocolError(f"Crumb response from {url} lacks crumbRequestField/crumb")
        return Crumb(field=str(field_name), value=str(value))


__all__ = [
    "ClientFactory",
    "ConnectionGate",
    "RemoteTransport",
    "RequestPolicy",
    "Sleeper",
    "decode_json",
    "server_base",
]
