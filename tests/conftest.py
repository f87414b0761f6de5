from __future__ import annotations

import io
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

# Ensure the src/ directory is importable when tests run via `uv run pytest`.
sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from remote_trigger.auth import InMemoryCredentialStore  # noqa: E402
from remote_trigger.context import ExecutionContext  # noqa: E402
from remote_trigger.runtime import (  # noqa: E402
    ConnectionGate,
    CrumbCache,
    RemoteTransport,
    RemoteTriggerEngine,
)
from remote_trigger.servers import RemoteServer, ServerRegistry  # noqa: E402

BASE_URL = "http://jenkins.test"

Responder = Callable[[httpx.Request], httpx.Response]


def respond(
    status: int = 200,
    *,
    json: Any = None,
    text: str | None = None,
    headers: dict[str, str] | None = None,
) -> Responder:
    """Build a fresh response per call so scripted routes can repeat."""

    def _responder(request: httpx.Request) -> httpx.Response:
        if json is not None:
            return httpx.Response(status, json=json, headers=headers)
        if text is not None:
            return httpx.Response(status, text=text, headers=headers)
        return httpx.Response(status, headers=headers)

    return _responder


def connect_error(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


class FakeRemote:
    """Scripted Jenkins-compatible server.

    Routes are keyed by (method, path). Each route holds a list of
    responders; they are consumed in order and the last one repeats.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], list[Responder]] = {}
        self.sleeps: list[float] = []
        self.crumb: dict[str, str] | None = {"crumbRequestField": "Jenkins-Crumb", "crumb": "c-1"}
        self.client_headers: dict[str, str] = {}

    def add(self, method: str, path: str, *responders: Responder) -> None:
        self.routes.setdefault((method, path), []).extend(responders)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        responders = self.routes.get(key)
        if not responders:
            if key == ("GET", "/crumbIssuer/api/json"):
                if self.crumb is None:
                    return httpx.Response(404)
                return httpx.Response(200, json=self.crumb)
            return httpx.Response(404)
        responder = responders.pop(0) if len(responders) > 1 else responders[0]
        return responder(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler),
            headers=self.client_headers,
        )

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)

    def calls(self, method: str | None = None, path: str | None = None) -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if (method is None or request.method == method)
            and (path is None or request.url.path == path)
        ]

    def script_build(
        self,
        *,
        job_path: str = "/job/my-job",
        queue_id: int = 42,
        build_number: int = 7,
        result: str = "SUCCESS",
        running_polls: int = 0,
    ) -> str:
        """Script the happy path: submit, queue resolves, build finishes."""

        build_url = f"{BASE_URL}{job_path}/{build_number}/"
        self.add(
            "GET",
            f"{job_path}/api/json",
            respond(json={"name": "my-job", "fullName": "my-job", "url": f"{BASE_URL}{job_path}/"}),
        )
        location = {"Location": f"{BASE_URL}/queue/item/{queue_id}/"}
        self.add("POST", f"{job_path}/build", respond(201, headers=location))
        self.add("POST", f"{job_path}/buildWithParameters", respond(201, headers=location))
        self.add(
            "GET",
            f"/queue/item/{queue_id}/api/json",
            respond(json={"executable": {"number": build_number, "url": build_url}}),
        )
        statuses = [respond(json={"building": True, "result": None}) for _ in range(running_polls)]
        statuses.append(respond(json={"building": False, "result": result}))
        self.add("GET", f"{job_path}/{build_number}/api/json", *statuses)
        return build_url


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def credentials() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def registry() -> ServerRegistry:
    servers = ServerRegistry()
    servers.register(RemoteServer(name="main", address=BASE_URL))
    return servers


@pytest.fixture
def transport(remote: FakeRemote) -> RemoteTransport:
    return RemoteTransport(
        gate=ConnectionGate(5),
        crumb_cache=CrumbCache(),
        client_factory=remote.client,
        sleep=remote.sleep,
    )


@pytest.fixture
def engine(
    remote: FakeRemote,
    registry: ServerRegistry,
    credentials: InMemoryCredentialStore,
    transport: RemoteTransport,
) -> RemoteTriggerEngine:
    return RemoteTriggerEngine(
        server_lookup=registry.lookup,
        credentials=credentials,
        transport=transport,
        sleep=remote.sleep,
    )


@pytest.fixture
def context(credentials: InMemoryCredentialStore) -> ExecutionContext:
    return ExecutionContext(
        identity_path="team/pipeline",
        output=io.StringIO(),
        credentials=credentials,
    )
