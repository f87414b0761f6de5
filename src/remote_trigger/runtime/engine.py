"""Trigger, queue resolution and status polling against a remote build server."""

from __future__ import annotations

import asyncio
import io
import logging
import re
from collections.abc import Mapping
from dataclasses import replace
from typing import Any
from urllib.parse import quote

import httpx

from remote_trigger.auth import AuthProvider, CredentialStore
from remote_trigger.context import ExecutionContext
from remote_trigger.domain import BuildResult, BuildStatus, RemoteBuildInfo
from remote_trigger.exceptions import (
    RemoteBuildFailedError,
    RemoteProtocolError,
    RemoteTriggerError,
)
from remote_trigger.servers import (
    RemoteServer,
    ServerLookup,
    evaluate_effective_remote_host,
    generate_job_url,
)

from .caches import JobInfoCache
from .configuration import MAX_CONNECTIONS_LIMIT, TriggerConfiguration
from .handle import Handle
from .transport import (
    ConnectionGate,
    RemoteTransport,
    RequestPolicy,
    Sleeper,
    server_base,
)

logger = logging.getLogger(__name__)

_QUEUE_ITEM_PATTERN = re.compile(r"/queue/item/(\d+)")
_JOB_METADATA_TREE = "name,fullName,displayName,fullDisplayName,url"
_JOB_ACTIVITY_TREE = "inQueue,lastBuild[building]"
_BUILD_STATUS_TREE = "building,result"


def extract_queue_id(response: httpx.Response) -> str | None:
    """Queue reference from the Location header, else from a JSON body field."""

    location = response.headers.get("Location")
    if location:
        match = _QUEUE_ITEM_PATTERN.search(location)
        if match:
            return match.group(1)
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, Mapping):
        for key in ("queueId", "id"):
            value = body.get(key)
            if value is not None and str(value).strip():
                return str(value).strip()
    return None


def _with_trailing_slash(url: str) -> str:
    return url if url.endswith("/") else url + "/"


class RemoteTriggerEngine:
    """Submits remote builds and advances their state machine one step at a time.

    The engine holds no per-build state. Every mutation lands on the
    ``RemoteBuildInfo`` owned by the handle passed in, so independent handles
    can be refreshed concurrently.
    """

    def __init__(
        self,
        *,
        server_lookup: ServerLookup | None = None,
        credentials: CredentialStore | None = None,
        transport: RemoteTransport | None = None,
        job_info_cache: JobInfoCache | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._server_lookup = server_lookup
        self._credentials = credentials
        self._transport = transport or RemoteTransport(gate=ConnectionGate(MAX_CONNECTIONS_LIMIT))
        self._job_info = job_info_cache or JobInfoCache()
        self._sleep = sleep

    @property
    def transport(self) -> RemoteTransport:
        return self._transport

    @property
    def job_info_cache(self) -> JobInfoCache:
        return self._job_info

    @property
    def credentials(self) -> CredentialStore | None:
        return self._credentials

    def context_for(self, identity_path: str) -> tuple[ExecutionContext, io.StringIO]:
        """Throwaway context with a fresh log buffer for detached operations."""

        return ExecutionContext.detached(identity_path, credentials=self._credentials)

    def resolve_server(self, configuration: TriggerConfiguration) -> RemoteServer:
        return evaluate_effective_remote_host(
            configuration.job,
            override_url=configuration.remote_server_url,
            server_name=configuration.remote_server_name,
            lookup=self._server_lookup,
        )

    def attach(self, handle: Handle) -> Handle:
        handle.bind(self)
        return handle

    def load_handle(self, raw: str | bytes) -> Handle:
        """Restore a serialized handle and attach it to this engine."""

        return self.attach(Handle.model_validate_json(raw))

    async def trigger(
        self,
        configuration: TriggerConfiguration,
        context: ExecutionContext,
    ) -> Handle | None:
        """Submit the remote job and, when blocking, follow it to completion.

        Server and job URL resolution happen before any network call, so
        configuration errors fail the trigger synchronously. A disabled
        configuration logs that fact and returns ``None`` without contacting
        the remote server.
        """

        if configuration.disabled:
            context.log("The remote trigger is disabled; no remote build is started")
            return None

        server = self.resolve_server(configuration)
        job_url = generate_job_url(server, configuration.job)
        auth = configuration.effective_auth(server)
        policy = RequestPolicy.from_configuration(configuration)

        context.log(f"Triggering remote job '{job_url}'")
        context.log(f"  using {auth.describe(context.identity_path)}")

        async with self._transport.session() as client:
            if configuration.prevent_remote_build_queue:
                await self._wait_until_idle(
                    client, configuration, context, server, auth, policy, job_url
                )
            metadata = await self._job_metadata(
                client, configuration, context, server, auth, policy, job_url
            )
            queue_id = await self._submit(client, configuration, context, server, auth, policy, job_url)

        handle = Handle(
            configuration=configuration,
            build_info=RemoteBuildInfo().queued(queue_id),
            identity_path=context.identity_path,
            remote_server=server,
            **Handle.metadata_fields(metadata),
        )
        self.attach(handle)

        if configuration.blocking:
            await self.refresh(handle, context, blocking=True)
            if (
                not configuration.should_not_fail_build
                and handle.build_result is not BuildResult.SUCCESS
            ):
                raise RemoteBuildFailedError(handle)
        return handle

    async def refresh(
        self,
        handle: Handle,
        context: ExecutionContext,
        *,
        blocking: bool,
    ) -> BuildStatus:
        """Advance the handle by one step, or until finished when blocking.

        A cancellation that arrives while a poll request is in flight takes
        effect once that step has completed and been applied, so the abort
        targets the latest known queue item or build. The remote build is
        aborted first when the configuration asks for it; the cancellation
        always propagates. A failed step leaves the handle unchanged.
        """

        configuration = handle.configuration
        try:
            while not handle.is_finished():
                await self._step(handle, context)
                if not blocking or handle.is_finished():
                    break
                await self._sleep(configuration.poll_interval)
        except asyncio.CancelledError:
            if configuration.abort_on_cancel:
                await self.abort(configuration, handle.remote_server, handle.build_info, context)
            raise
        return handle.build_status

    async def _step(self, handle: Handle, context: ExecutionContext) -> None:
        step = asyncio.ensure_future(
            self.update_build_info(
                handle.configuration, handle.build_info, context, handle.remote_server
            )
        )
        try:
            build_info = await asyncio.shield(step)
        except asyncio.CancelledError:
            if not step.cancelled():
                try:
                    handle.advance(await step)
                except RemoteTriggerError as exc:
                    context.log(f"Updating remote build status failed: {exc}")
            raise
        except RemoteTriggerError as exc:
            context.log(f"Updating remote build status failed: {exc}")
            raise
        handle.advance(build_info)

    async def update_build_info(
        self,
        configuration: TriggerConfiguration,
        build_info: RemoteBuildInfo,
        context: ExecutionContext,
        server: RemoteServer,
    ) -> RemoteBuildInfo:
        """One poll step. Finished builds are returned without a network call."""

        if build_info.is_finished():
            return build_info
        if build_info.status is BuildStatus.SUBMITTING:
            msg = f"Remote build of '{configuration.job}' has no queue reference to poll"
            raise RemoteProtocolError(msg)

        auth = configuration.effective_auth(server)
        policy = RequestPolicy.from_configuration(configuration)
        async with self._transport.session() as client:
            if build_info.is_queued():
                return await self._resolve_queue_item(
                    client, configuration, build_info, context, server, auth, policy
                )
            return await self._poll_build(
                client, configuration, build_info, context, server, auth, policy
            )

    async def abort(
        self,
        configuration: TriggerConfiguration,
        server: RemoteServer,
        build_info: RemoteBuildInfo,
        context: ExecutionContext,
    ) -> None:
        """Best-effort stop of the remote build or queue item; never raises."""

        if build_info.is_finished():
            return
        params: dict[str, str] | None = None
        if build_info.build_url:
            url = f"{build_info.build_url}stop"
            target = f"build {build_info.build_url}"
        elif build_info.queue_id:
            url = f"{server_base(server)}/queue/cancelItem"
            params = {"id": build_info.queue_id}
            target = f"queue item {build_info.queue_id}"
        else:
            context.log("Nothing to abort: the remote build was never queued")
            return

        auth = configuration.effective_auth(server)
        policy = replace(RequestPolicy.from_configuration(configuration), retry_limit=1)
        try:
            async with self._transport.session() as client:
                await self._transport.request(
                    client,
                    "POST",
                    url,
                    context=context,
                    server=server,
                    auth=auth,
                    policy=policy,
                    params=params,
                )
        except (RemoteTriggerError, httpx.HTTPError) as exc:
            logger.warning("Aborting remote %s failed: %s", target, exc)
            context.log(f"Could not abort remote {target}: {exc}")
            return
        context.log(f"Aborted remote {target}")

    async def read_remote_artifact(
        self,
        handle: Handle,
        path: str | None,
        context: ExecutionContext,
    ) -> Any:
        if not path or not path.strip():
            return None
        build_url = handle.build_url
        if build_url is None:
            context.log("Remote build URL is not known yet; no artifact to read")
            return None

        configuration = handle.configuration
        url = f"{build_url}artifact/{quote(path.strip().lstrip('/'), safe='/')}"
        context.log(f"Reading remote artifact '{url}'")
        async with self._transport.session() as client:
            return await self._transport.get_json(
                client,
                url,
                context=context,
                server=handle.remote_server,
                auth=configuration.effective_auth(handle.remote_server),
                policy=RequestPolicy.from_configuration(configuration),
            )

    async def _job_metadata(
        self,
        client: httpx.AsyncClient,
        configuration: TriggerConfiguration,
        context: ExecutionContext,
        server: RemoteServer,
        auth: AuthProvider,
        policy: RequestPolicy,
        job_url: str,
    ) -> Mapping[str, Any]:
        async def _load() -> Any:
            return await self._transport.get_json(
                client,
                f"{job_url}/api/json",
                context=context,
                server=server,
                auth=auth,
                policy=policy,
                params={"tree": _JOB_METADATA_TREE},
            )

        try:
            if configuration.use_job_info_cache:
                return await self._job_info.get_or_load(job_url, _load)
            payload = await _load()
        except RemoteTriggerError as exc:
            logger.info("Remote job metadata for %s unavailable: %s", job_url, exc)
            context.log(f"Could not read metadata of remote job: {exc}")
            return {}
        return payload if isinstance(payload, Mapping) else {}

    async def _wait_until_idle(
        self,
        client: httpx.AsyncClient,
        configuration: TriggerConfiguration,
        context: ExecutionContext,
        server: RemoteServer,
        auth: AuthProvider,
        policy: RequestPolicy,
        job_url: str,
    ) -> None:
        while True:
            payload = await self._transport.get_json(
                client,
                f"{job_url}/api/json",
                context=context,
                server=server,
                auth=auth,
                policy=policy,
                params={"tree": _JOB_ACTIVITY_TREE},
            )
            if not isinstance(payload, Mapping):
                raise RemoteProtocolError(f"Unexpected job payload from {job_url}")
            in_queue = bool(payload.get("inQueue"))
            last_build = payload.get("lastBuild")
            building = isinstance(last_build, Mapping) and bool(last_build.get("building"))
            if not in_queue and not building:
                return
            state = "queued" if in_queue else "building"
            context.log(
                f"Remote job is currently {state}; waiting {configuration.poll_interval:g}s "
                "before triggering"
            )
            await self._sleep(configuration.poll_interval)

    async def _submit(
        self,
        client: httpx.AsyncClient,
        configuration: TriggerConfiguration,
        context: ExecutionContext,
        server: RemoteServer,
        auth: AuthProvider,
        policy: RequestPolicy,
        job_url: str,
    ) -> str:
        endpoint = "buildWithParameters" if configuration.parameters else "build"
        params = {"token": configuration.token} if configuration.token else None
        response = await self._transport.request(
            client,
            "POST",
            f"{job_url}/{endpoint}",
            context=context,
            server=server,
            auth=auth,
            policy=policy,
            params=params,
            data=configuration.parameters or None,
        )
        queue_id = extract_queue_id(response)
        if queue_id is None:
            msg = f"Remote server did not return a queue reference for {job_url}"
            raise RemoteProtocolError(msg)
        context.log(f"Remote job queued with id {queue_id}")
        return queue_id

    async def _resolve_queue_item(
        self,
        client: httpx.AsyncClient,
        configuration: TriggerConfiguration,
        build_info: RemoteBuildInfo,
        context: ExecutionContext,
        server: RemoteServer,
        auth: AuthProvider,
        policy: RequestPolicy,
    ) -> RemoteBuildInfo:
        url = f"{server_base(server)}/queue/item/{build_info.queue_id}/api/json"
        payload = await self._transport.get_json(
            client, url, context=context, server=server, auth=auth, policy=policy
        )
        if not isinstance(payload, Mapping):
            raise RemoteProtocolError(f"Unexpected queue item payload from {url}")

        if payload.get("cancelled"):
            context.log(f"Remote queue item {build_info.queue_id} was cancelled")
            return build_info.finished(BuildResult.ABORTED)

        executable = payload.get("executable")
        if isinstance(executable, Mapping) and executable.get("number") is not None:
            try:
                number = int(executable["number"])
            except (TypeError, ValueError) as exc:
                msg = f"Queue item {build_info.queue_id} has an invalid build number"
                raise RemoteProtocolError(msg) from exc
            raw_url = executable.get("url") or (
                f"{generate_job_url(server, configuration.job)}/{number}/"
            )
            build_url = _with_trailing_slash(str(raw_url))
            context.log(f"Remote build started: {build_url}")
            return build_info.running(number, build_url)

        why = payload.get("why")
        suffix = f": {why}" if why else ""
        context.log(f"Waiting for remote build to leave the queue{suffix}")
        return build_info

    async def _poll_build(
        self,
        client: httpx.AsyncClient,
        configuration: TriggerConfiguration,
        build_info: RemoteBuildInfo,
        context: ExecutionContext,
        server: RemoteServer,
        auth: AuthProvider,
        policy: RequestPolicy,
    ) -> RemoteBuildInfo:
        build_url = build_info.build_url or ""
        payload = await self._transport.get_json(
            client,
            f"{build_url}api/json",
            context=context,
            server=server,
            auth=auth,
            policy=policy,
            params={"tree": _BUILD_STATUS_TREE},
        )
        if not isinstance(payload, Mapping):
            raise RemoteProtocolError(f"Unexpected build payload from {build_url}")

        if payload.get("building") or payload.get("result") is None:
            context.log(f"Remote build #{build_info.build_number} is still running")
            return build_info

        result = BuildResult.from_remote(payload.get("result"))
        finished = build_info.finished(result)
        context.log(f"Remote build #{build_info.build_number} finished with status {result.value}")

        if configuration.enhanced_logging:
            try:
                console = await self._transport.get_text(
                    client,
                    f"{build_url}consoleText",
                    context=context,
                    server=server,
                    auth=auth,
                    policy=policy,
                )
            except RemoteTriggerError as exc:
                logger.warning("Console output of %s unavailable: %s", build_url, exc)
                context.log(f"Could not read console output of remote build: {exc}")
            else:
                context.log("Console output of remote job:")
                context.log("-" * 60)
                context.log(console.rstrip("\n"))
                context.log("-" * 60)
        return finished


__all__ = ["RemoteTriggerEngine", "extract_queue_id"]
