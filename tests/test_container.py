from __future__ import annotations

import json
from pathlib import Path

import pytest

from remote_trigger.config import AppSettings
from remote_trigger.container import build_container
from remote_trigger.exceptions import ConfigError
from remote_trigger.runtime import TriggerConfiguration


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("REMOTE_TRIGGER_ENV", "test")
    monkeypatch.setenv("REMOTE_TRIGGER_SERVERS_FILE", str(tmp_path / "servers.json"))
    monkeypatch.setenv("REMOTE_TRIGGER_MAX_CONNECTIONS", "3")
    monkeypatch.setenv("REMOTE_TRIGGER_REQUEST_TIMEOUT", "7.5")
    monkeypatch.setenv("REMOTE_TRIGGER_LOG_LEVEL", "debug")
    monkeypatch.setenv("JOB_NAME", "team/pipeline")
    monkeypatch.delenv("REMOTE_TRIGGER_CREDENTIALS_FILE", raising=False)

    settings = AppSettings.from_env()

    assert settings.environment == "test"
    assert settings.servers_file == tmp_path / "servers.json"
    assert settings.credentials_file is None
    assert settings.max_connections == 3
    assert settings.request_timeout == 7.5
    assert settings.retry_backoff_seconds == 1.0
    assert settings.log_level == "DEBUG"
    assert settings.ambient_identity == "team/pipeline"


def test_build_container_loads_servers_and_credentials(tmp_path: Path) -> None:
    servers_file = tmp_path / "servers.json"
    servers_file.write_text(
        json.dumps([{"name": "main", "address": "http://jenkins.test"}]), encoding="utf-8"
    )
    credentials_file = tmp_path / "credentials.json"
    credentials_file.write_text(
        json.dumps([{"id": "deploy", "username": "bot", "password": "pw", "scope": "team"}]),
        encoding="utf-8",
    )
    settings = AppSettings(
        environment="test",
        servers_file=servers_file,
        credentials_file=credentials_file,
        max_connections=2,
    )

    container = build_container(settings)

    assert [server.name for server in container.server_registry.list_servers()] == ["main"]
    assert container.credential_store.lookup("deploy", "team/job") is not None
    assert container.transport.gate.capacity == 2
    assert container.engine.transport is container.transport
    assert container.engine.credentials is container.credential_store
    resolved = container.engine.resolve_server(
        TriggerConfiguration(job="my-job", remote_server_name="main")
    )
    assert resolved.address == "http://jenkins.test"


def test_build_container_without_files() -> None:
    container = build_container(AppSettings(environment="test"))

    assert container.server_registry.list_servers() == ()
    assert len(container.credential_store) == 0


def test_build_container_reports_broken_files(tmp_path: Path) -> None:
    broken = tmp_path / "servers.json"
    broken.write_text("nope", encoding="utf-8")

    with pytest.raises(ConfigError):
        build_container(AppSettings(servers_file=broken))
