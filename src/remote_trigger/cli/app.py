"""Typer CLI wiring the remote trigger services."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from remote_trigger.auth import (
    AuthConfig,
    BearerTokenAuth,
    CredentialAuth,
    UserTokenAuth,
)
from remote_trigger.container import ServiceContainer
from remote_trigger.context import resolve_execution_context
from remote_trigger.exceptions import (
    ConfigError,
    ContextResolutionError,
    RemoteBuildFailedError,
    RemoteTriggerError,
)
from remote_trigger.runtime import DEFAULT_POLL_INTERVAL, Handle, TriggerConfiguration

from .deps import get_container

app = typer.Typer(help="Trigger and follow builds on remote Jenkins-compatible servers")
console = Console()

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _container() -> ServiceContainer:
    try:
        return get_container()
    except ConfigError as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.callback()
def configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    """Configure logging from the resolved settings."""

    settings = _container().settings
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level, logging.WARNING)
    logging.basicConfig(level=level, format=_LOG_FORMAT)


def _parse_parameters(values: list[str] | None) -> dict[str, str]:
    parameters: dict[str, str] = {}
    for raw in values or []:
        key, separator, value = raw.partition("=")
        if not separator or not key.strip():
            raise typer.BadParameter(f"Expected KEY=VALUE, got '{raw}'", param_hint="--parameter")
        parameters[key.strip()] = value
    return parameters


def _build_auth(
    user: str | None,
    api_token: str | None,
    bearer_token: str | None,
    credential: str | None,
) -> AuthConfig | None:
    chosen = [
        name
        for name, enabled in (
            ("--user/--api-token", bool(user or api_token)),
            ("--bearer-token", bool(bearer_token)),
            ("--credential", bool(credential)),
        )
        if enabled
    ]
    if len(chosen) > 1:
        raise typer.BadParameter("Choose only one of " + ", ".join(chosen))
    if user or api_token:
        if not (user and api_token):
            raise typer.BadParameter("--user and --api-token must be given together")
        return UserTokenAuth(user_name=user, api_token=api_token)
    if bearer_token:
        return BearerTokenAuth(token=bearer_token)
    if credential:
        return CredentialAuth(credential_id=credential)
    return None


def _write_handle(handle: Handle, handle_file: Path | None) -> None:
    if handle_file is None:
        return
    handle_file.write_text(handle.model_dump_json(indent=2), encoding="utf-8")
    typer.echo(f"Handle written to {handle_file}")


def _load_handle(container: ServiceContainer, handle_file: Path) -> Handle:
    try:
        raw = handle_file.read_text(encoding="utf-8")
    except OSError as exc:
        typer.echo(f"Unable to read handle file {handle_file}: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    try:
        return container.engine.load_handle(raw)
    except ValidationError as exc:
        typer.echo(f"Handle file {handle_file} is not a valid handle: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _echo_status(handle: Handle) -> None:
    typer.echo(f"Remote build status: {handle.build_status.value}")
    if handle.build_url:
        typer.echo(f"Remote build URL: {handle.build_url}")
    if handle.build_result is not None:
        typer.echo(f"Remote build result: {handle.build_result.value}")


@app.command("show-settings")
def show_settings() -> None:
    """Print the resolved application settings."""

    settings = _container().settings
    typer.echo("Environment:\t" + settings.environment)
    typer.echo("Servers File:\t" + str(settings.servers_file or "-"))
    typer.echo("Credentials File:\t" + str(settings.credentials_file or "-"))
    typer.echo("Ambient Identity:\t" + (settings.ambient_identity or "-"))
    typer.echo(f"Max Connections:\t{settings.max_connections}")
    typer.echo(f"Request Timeout:\t{settings.request_timeout}")
    typer.echo("Log Level:\t" + settings.log_level)


@app.command("servers")
def list_servers() -> None:
    """List the configured remote servers."""

    servers = _container().server_registry.list_servers()
    if not servers:
        typer.echo("No remote servers configured")
        return

    table = Table(title="Remote Servers")
    table.add_column("Name", style="cyan")
    table.add_column("Address")
    table.add_column("Authorization")
    for server in servers:
        auth = server.auth.describe() if server.auth is not None else "[dim]-[/dim]"
        table.add_row(server.name or "-", server.address or "-", auth)
    console.print(table)


@app.command("trigger")
def trigger(
    job: str = typer.Argument(..., help="Remote job name, folder path or full job URL"),
    server: str | None = typer.Option(None, "--server", help="Configured remote server name"),
    url: str | None = typer.Option(None, "--url", help="Remote server URL override"),
    parameter: list[str] | None = typer.Option(
        None, "--parameter", "-p", help="Build parameter as KEY=VALUE (repeatable)"
    ),
    identity: str | None = typer.Option(
        None, "--identity", help="Identity path of the calling job (defaults to $JOB_NAME)"
    ),
    user: str | None = typer.Option(None, "--user", help="Remote user name"),
    api_token: str | None = typer.Option(None, "--api-token", help="Remote API token"),
    bearer_token: str | None = typer.Option(None, "--bearer-token", help="Bearer token"),
    credential: str | None = typer.Option(None, "--credential", help="Stored credential id"),
    build_token: str | None = typer.Option(None, "--build-token", help="Remote job trigger token"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Follow the build until it finishes"),
    poll_interval: float = typer.Option(DEFAULT_POLL_INTERVAL, min=0, help="Seconds between polls"),
    max_connections: int = typer.Option(1, min=1, max=5, help="Concurrent requests for this build"),
    retry_limit: int = typer.Option(5, min=1, help="Attempts per request on connection failures"),
    abort_on_cancel: bool = typer.Option(False, "--abort-on-cancel"),
    enhanced_logging: bool = typer.Option(False, "--enhanced-logging"),
    prevent_queue: bool = typer.Option(False, "--prevent-queue"),
    should_not_fail: bool = typer.Option(
        False, "--should-not-fail", help="Exit 0 even if the remote build did not succeed"
    ),
    disabled: bool = typer.Option(
        False, "--disabled", help="Skip the trigger and exit 0 without contacting the server"
    ),
    handle_file: Path | None = typer.Option(None, "--handle-file", help="Write the handle here"),
) -> None:
    """Trigger a remote build and report its status."""

    container = _container()
    try:
        configuration = TriggerConfiguration(
            job=job,
            remote_server_name=server,
            remote_server_url=url,
            parameters=_parse_parameters(parameter),
            token=build_token,
            auth=_build_auth(user, api_token, bearer_token, credential),
            blocking=wait,
            poll_interval=poll_interval,
            max_connections=max_connections,
            connection_retry_limit=retry_limit,
            abort_on_cancel=abort_on_cancel,
            prevent_remote_build_queue=prevent_queue,
            enhanced_logging=enhanced_logging,
            should_not_fail_build=should_not_fail,
            disabled=disabled,
        )
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    try:
        context = resolve_execution_context(
            identity,
            container.settings.ambient_identity,
            output=sys.stdout,
            credentials=container.credential_store,
        )
    except ContextResolutionError as exc:
        typer.echo(f"{exc} (use --identity or set JOB_NAME)", err=True)
        raise typer.Exit(code=1) from exc

    try:
        handle = asyncio.run(container.engine.trigger(configuration, context))
    except RemoteBuildFailedError as exc:
        _echo_status(exc.handle)
        _write_handle(exc.handle, handle_file)
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    except RemoteTriggerError as exc:
        typer.echo(f"Remote trigger failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    if handle is None:
        return
    _echo_status(handle)
    _write_handle(handle, handle_file)


@app.command("status")
def status(
    handle_file: Path = typer.Argument(..., help="Handle written by 'trigger --handle-file'"),
    wait: bool = typer.Option(False, "--wait", help="Poll until the remote build finishes"),
) -> None:
    """Refresh a stored handle and print the remote build status."""

    container = _container()
    handle = _load_handle(container, handle_file)

    async def _run() -> None:
        if wait:
            await handle.update_build_status_blocking()
        else:
            await handle.update_build_status()

    try:
        asyncio.run(_run())
    except RemoteTriggerError as exc:
        log = handle.last_log()
        if log:
            typer.echo(log)
        typer.echo(f"Status update failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    log = handle.last_log()
    if log:
        typer.echo(log)
    _echo_status(handle)
    handle_file.write_text(handle.model_dump_json(indent=2), encoding="utf-8")


@app.command("artifact")
def artifact(
    handle_file: Path = typer.Argument(..., help="Handle written by 'trigger --handle-file'"),
    path: str = typer.Argument(..., help="Artifact path relative to the build's archive"),
) -> None:
    """Print a JSON artifact archived by the remote build."""

    container = _container()
    handle = _load_handle(container, handle_file)
    try:
        payload = asyncio.run(handle.read_remote_artifact(path))
    except RemoteTriggerError as exc:
        typer.echo(f"Reading artifact failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    if payload is None:
        typer.echo("No artifact available for this build", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


__all__ = ["app"]
