"""Unit tests for the Typer CLI."""

from __future__ import annotations

import base64
import logging
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest
import respx
import structlog
from typer.testing import CliRunner

from agentgate.auth.tokens import verify_token
from agentgate.main import app


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Run every command without picking up a real config file."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("AGENTGATE_AUTH__SECRET", "cli-secret")
    monkeypatch.setenv("AGENTGATE_LOGGING__FORMAT", "console")
    yield
    logging.getLogger().handlers.clear()
    structlog.reset_defaults()


def test_token_command(cli_runner: CliRunner) -> None:
    result = cli_runner.invoke(app, ["token", "alice"])

    assert result.exit_code == 0
    token = result.stdout.strip()
    assert verify_token(token, "cli-secret") == "alice"


def test_token_uses_config_file(cli_runner: CliRunner, tmp_path: Path) -> None:
    config_file = tmp_path / "custom.toml"
    config_file.write_text('[auth]\nsecret = "file-secret"\n')

    result = cli_runner.invoke(app, ["--config", str(config_file), "token", "bob"])

    assert result.exit_code == 0
    raw = base64.b64decode(result.stdout.strip()).decode()
    assert raw.startswith("bob:")


def test_invalid_config_exits(cli_runner: CliRunner, tmp_path: Path) -> None:
    config_file = tmp_path / "bad.toml"
    config_file.write_text('[queue]\npool_size = "many"\n')

    result = cli_runner.invoke(app, ["--config", str(config_file), "token", "bob"])

    assert result.exit_code == 1
    assert "Error loading configuration" in result.stdout


@respx.mock
def test_status_command(cli_runner: CliRunner) -> None:
    route = respx.get("http://gateway:8080/status").mock(
        return_value=httpx.Response(
            200,
            json={
                "workers": [{"id": "worker-0", "state": "ready", "busySince": None}],
                "queueLength": 1,
                "maxQueueSize": 20,
                "totalProcessed": 5,
                "totalErrors": 0,
                "sessions": [{"id": "01234567", "lastActivity": 1.0, "processing": True}],
            },
        )
    )

    result = cli_runner.invoke(app, ["status", "--url", "http://gateway:8080", "--user", "ops"])

    assert result.exit_code == 0
    assert "worker-0" in result.stdout
    assert "1/20" in result.stdout
    assert "01234567" in result.stdout
    header = route.calls.last.request.headers["Authorization"]
    assert verify_token(header.removeprefix("Bearer "), "cli-secret") == "ops"


@respx.mock
def test_status_unreachable(cli_runner: CliRunner) -> None:
    respx.get("http://gateway:8080/status").mock(side_effect=httpx.ConnectError("refused"))

    result = cli_runner.invoke(app, ["status", "--url", "http://gateway:8080"])

    assert result.exit_code == 1
    assert "Failed to fetch status" in result.stdout


def test_serve_command(cli_runner: CliRunner) -> None:
    with patch("uvicorn.run") as mock_run:
        result = cli_runner.invoke(app, ["serve", "--port", "9001"])

    assert result.exit_code == 0
    assert "Starting Agentgate" in result.stdout
    mock_run.assert_called_once()
    _, kwargs = mock_run.call_args
    assert kwargs["host"] == "0.0.0.0"
    assert kwargs["port"] == 9001
    assert kwargs["log_level"] == "info"
    assert mock_run.call_args.args[0].title == "Agentgate"
