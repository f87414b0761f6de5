from __future__ import annotations

import asyncio

import httpx
import pytest

from remote_trigger.auth import NoAuth, UserTokenAuth
from remote_trigger.context import ExecutionContext
from remote_trigger.exceptions import (
    AuthRejectedError,
    RemoteProtocolError,
    RemoteRejectedError,
    TransportFailureError,
)
from remote_trigger.runtime import (
    ConnectionGate,
    CrumbKey,
    JobInfoCache,
    RemoteTransport,
    RequestPolicy,
)
from remote_trigger.servers import RemoteServer

from conftest import FakeRemote, connect_error, respond

SERVER = RemoteServer(name="main", address="http://jenkins.test/")
STATUS_PATH = "/job/my-job/api/json"
BUILD_PATH = "/job/my-job/build"


def _call(
    transport: RemoteTransport,
    context: ExecutionContext,
    method: str,
    path: str,
    *,
    auth=None,
    policy: RequestPolicy | None = None,
) -> httpx.Response:
    async def _run() -> httpx.Response:
        async with transport.session() as client:
            return await transport.request(
                client,
                method,
                f"http://jenkins.test{path}",
                context=context,
                server=SERVER,
                auth=auth or NoAuth(),
                policy=policy or RequestPolicy(),
            )

    return asyncio.run(_run())


def test_connection_failures_are_retried_with_backoff(
    remote: FakeRemote, transport: RemoteTransport, context: ExecutionContext
) -> None:
    remote.add("GET", STATUS_PATH, connect_error, connect_error, respond(json={"ok": True}))

    response = _call(transport, context, "GET", STATUS_PATH)

    assert response.json() == {"ok": True}
    assert remote.sleeps == [1.0, 2.0]
    assert "retrying" in context.output.getvalue()


def test_retries_are_bounded(
    remote: FakeRemote, transport: RemoteTransport, context: ExecutionContext
) -> None:
    remote.add("GET", STATUS_PATH, connect_error)

    with pytest.raises(TransportFailureError) as excinfo:
        _call(transport, context, "GET", STATUS_PATH, policy=RequestPolicy(retry_limit=3))

    assert excinfo.value.attempts == 3
    assert len(remote.calls("GET", STATUS_PATH)) == 3
    assert len(remote.sleeps) == 2


def test_backoff_is_capped(remote: FakeRemote, context: ExecutionContext) -> None:
    transport = RemoteTransport(
        gate=ConnectionGate(1),
        client_factory=remote.client,
        retry_backoff_seconds=2.0,
        max_backoff_seconds=5.0,
        sleep=remote.sleep,
    )
    remote.add("GET", STATUS_PATH, connect_error)

    with pytest.raises(TransportFailureError):
        _call(transport, context, "GET", STATUS_PATH, policy=RequestPolicy(retry_limit=4))

    assert remote.sleeps == [2.0, 4.0, 5.0]


def test_post_carries_crumb_and_reuses_cached_one(
    remote: FakeRemote, transport: RemoteTransport, context: ExecutionContext
) -> None:
    remote.add("POST", BUILD_PATH, respond(201))

    _call(transport, context, "POST", BUILD_PATH)
    _call(transport, context, "POST", BUILD_PATH)

    posts = remote.calls("POST", BUILD_PATH)
    assert [request.headers["Jenkins-Crumb"] for request in posts] == ["c-1", "c-1"]
    assert len(remote.calls("GET", "/crumbIssuer/api/json")) == 1
    assert len(transport.crumb_cache) == 1


def test_rejected_cached_crumb_is_refreshed_once(
    remote: FakeRemote, transport: RemoteTransport, context: ExecutionContext
) -> None:
    remote.add("POST", BUILD_PATH, respond(201), respond(403), respond(201))

    _call(transport, context, "POST", BUILD_PATH)
    remote.crumb = {"crumbRequestField": "Jenkins-Crumb", "crumb": "c-2"}
    response = _call(transport, context, "POST", BUILD_PATH)

    assert response.status_code == 201
    posts = remote.calls("POST", BUILD_PATH)
    assert [request.headers["Jenkins-Crumb"] for request in posts] == ["c-1", "c-1", "c-2"]
    assert len(remote.calls("GET", "/crumbIssuer/api/json")) == 2


def test_crumb_locks_survive_a_new_event_loop(
    remote: FakeRemote, transport: RemoteTransport, context: ExecutionContext
) -> None:
    async def _slow_crumb(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0)
        return httpx.Response(200, json={"crumbRequestField": "Jenkins-Crumb", "crumb": "c-1"})

    remote.add("GET", "/crumbIssuer/api/json", _slow_crumb)
    remote.add("POST", BUILD_PATH, respond(201))

    async def _burst() -> list[httpx.Response]:
        async def _post() -> httpx.Response:
            async with transport.session() as client:
                return await transport.request(
                    client,
                    "POST",
                    f"http://jenkins.test{BUILD_PATH}",
                    context=context,
                    server=SERVER,
                    auth=NoAuth(),
                    policy=RequestPolicy(max_connections=5),
                )

        return await asyncio.gather(*(_post() for _ in range(3)))

    first = asyncio.run(_burst())
    transport.crumb_cache.invalidate(
        CrumbKey("http://jenkins.test", context.identity_path, NoAuth().cache_key())
    )
    second = asyncio.run(_burst())

    assert [response.status_code for response in first + second] == [201] * 6
    assert len(remote.calls("GET", "/crumbIssuer/api/json")) == 2
    assert len(remote.calls("POST", BUILD_PATH)) == 6


def test_crumb_cache_is_scoped_by_remote_user(
    remote: FakeRemote, transport: RemoteTransport, context: ExecutionContext
) -> None:
    remote.add("POST", BUILD_PATH, respond(201))

    _call(transport, context, "POST", BUILD_PATH, auth=UserTokenAuth(user_name="a", api_token="x"))
    _call(transport, context, "POST", BUILD_PATH, auth=UserTokenAuth(user_name="b", api_token="y"))

    assert len(remote.calls("GET", "/crumbIssuer/api/json")) == 2


def test_crumb_cache_can_be_bypassed(
    remote: FakeRemote, transport: RemoteTransport, context: ExecutionContext
) -> None:
    remote.add("POST", BUILD_PATH, respond(201))
    policy = RequestPolicy(use_crumb_cache=False)

    _call(transport, context, "POST", BUILD_PATH, policy=policy)
    _call(transport, context, "POST", BUILD_PATH, policy=policy)

    assert len(remote.calls("GET", "/crumbIssuer/api/json")) == 2
    assert len(transport.crumb_cache) == 0


def test_servers_without_crumb_issuer_get_plain_posts(
    remote: FakeRemote, transport: RemoteTransport, context: ExecutionContext
) -> None:
    remote.crumb = None
    remote.add("POST", BUILD_PATH, respond(201))

    _call(transport, context, "POST", BUILD_PATH)

    (post,) = remote.calls("POST", BUILD_PATH)
    assert "Jenkins-Crumb" not in post.headers


def test_malformed_crumb_is_a_protocol_error(
    remote: FakeRemote, transport: RemoteTransport, context: ExecutionContext
) -> None:
    remote.add("GET", "/crumbIssuer/api/json", respond(json={"crumb": "x"}))

    with pytest.raises(RemoteProtocolError):
        _call(transport, context, "POST", BUILD_PATH)


def test_no_auth_removes_client_default_header(
    remote: FakeRemote, transport: RemoteTransport, context: ExecutionContext
) -> None:
    remote.client_headers = {"Authorization": "Basic stale"}
    remote.add("GET", STATUS_PATH, respond(json={}))

    _call(transport, context, "GET", STATUS_PATH)

    (request,) = remote.calls("GET", STATUS_PATH)
    assert "Authorization" not in request.headers


def test_auth_rejection_is_not_retried(
    remote: FakeRemote, transport: RemoteTransport, context: ExecutionContext
) -> None:
    remote.add("GET", STATUS_PATH, respond(401))

    with pytest.raises(AuthRejectedError) as excinfo:
        _call(transport, context, "GET", STATUS_PATH)

    assert excinfo.value.status_code == 401
    assert len(remote.calls("GET", STATUS_PATH)) == 1
    assert remote.sleeps == []


def test_server_errors_are_rejections(
    remote: FakeRemote, transport: RemoteTransport, context: ExecutionContext
) -> None:
    remote.add("GET", STATUS_PATH, respond(500))

    with pytest.raises(RemoteRejectedError) as excinfo:
        _call(transport, context, "GET", STATUS_PATH)

    assert excinfo.value.status_code == 500


def test_invalid_json_is_a_protocol_error(
    remote: FakeRemote, transport: RemoteTransport, context: ExecutionContext
) -> None:
    remote.add("GET", STATUS_PATH, respond(text="<html>"))

    async def _run() -> None:
        async with transport.session() as client:
            await transport.get_json(
                client,
                f"http://jenkins.test{STATUS_PATH}",
                context=context,
                server=SERVER,
                auth=NoAuth(),
                policy=RequestPolicy(),
            )

    with pytest.raises(RemoteProtocolError):
        asyncio.run(_run())


def test_connection_gate_bounds_in_flight_work() -> None:
    gate = ConnectionGate(3)
    peak = 0

    async def _worker(limit: int) -> None:
        nonlocal peak
        async with gate.slot(limit):
            peak = max(peak, gate.active)
            await asyncio.sleep(0.01)

    async def _run() -> None:
        await asyncio.gather(*(_worker(2) for _ in range(6)))

    asyncio.run(_run())

    assert peak == 2
    assert gate.active == 0


def test_connection_gate_caps_limit_at_capacity() -> None:
    gate = ConnectionGate(2)
    peak = 0

    async def _worker() -> None:
        nonlocal peak
        async with gate.slot(5):
            peak = max(peak, gate.active)
            await asyncio.sleep(0.01)

    async def _run() -> None:
        await asyncio.gather(*(_worker() for _ in range(5)))

    asyncio.run(_run())

    assert peak == 2


def test_connection_gate_requires_capacity() -> None:
    with pytest.raises(ValueError):
        ConnectionGate(0)


def test_job_info_cache_loads_once_per_url_across_event_loops() -> None:
    cache = JobInfoCache()
    loads: list[str] = []

    async def _loader() -> dict[str, str]:
        loads.append("load")
        await asyncio.sleep(0)
        return {"name": "my-job"}

    async def _burst(job_url: str) -> list:
        return await asyncio.gather(*(cache.get_or_load(job_url, _loader) for _ in range(3)))

    first = asyncio.run(_burst("http://jenkins.test/job/a/"))
    second = asyncio.run(_burst("http://jenkins.test/job/b/"))

    assert first == second == [{"name": "my-job"}] * 3
    assert loads == ["load", "load"]
