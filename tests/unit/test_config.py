"""Unit tests for configuration."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from buildpro_workflows.engine.config import EngineSettings
from buildpro_workflows.server.config import ServerSettings

_ENV_VARS = (
    "LOG_LEVEL",
    "WORKFLOW_STATE_PATH",
    "WORKFLOW_DUE_SOON_HOURS",
    "WORKFLOW_MAX_AUTOMATIC_HOPS",
    "WORKFLOW_ADMIN_ROLES",
    "WORKFLOW_SWEEP_ENABLED",
    "WORKFLOW_SWEEP_INTERVAL_SECONDS",
    "WORKFLOW_CORS_ORIGINS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_engine_settings_defaults() -> None:
    settings = EngineSettings(_env_file=None)

    assert settings.log_level == "INFO"
    assert settings.state_path == Path("workflow_state")
    assert settings.due_soon_hours == 24
    assert settings.max_automatic_hops == 64
    assert settings.parsed_admin_roles() == frozenset({"admin"})
    assert settings.workflows_file == Path("workflow_state") / "workflows.json"
    assert settings.templates_file.name == "templates.json"


def test_engine_settings_from_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("WORKFLOW_STATE_PATH", str(tmp_path))
    monkeypatch.setenv("WORKFLOW_DUE_SOON_HOURS", "48")
    monkeypatch.setenv("WORKFLOW_ADMIN_ROLES", "admin, project_manager ,")

    settings = EngineSettings(_env_file=None)

    assert settings.state_path == tmp_path
    assert settings.due_soon_hours == 48
    assert settings.parsed_admin_roles() == frozenset({"admin", "project_manager"})
    assert settings.members_file == tmp_path / "project_members.json"


def test_engine_settings_from_env_file(tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("WORKFLOW_MAX_AUTOMATIC_HOPS=8\nLOG_LEVEL=debug\n", encoding="utf-8")

    settings = EngineSettings(_env_file=env_file)

    assert settings.max_automatic_hops == 8
    assert settings.log_level == "debug"


@pytest.mark.parametrize(
    ("name", "value"),
    [("WORKFLOW_DUE_SOON_HOURS", "0"), ("WORKFLOW_MAX_AUTOMATIC_HOPS", "5000")],
)
def test_engine_settings_reject_out_of_range_values(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValidationError):
        EngineSettings(_env_file=None)


def test_server_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    defaults = ServerSettings(_env_file=None)
    assert defaults.sweep_enabled is False
    assert defaults.sweep_interval_seconds == 300.0

    monkeypatch.setenv("WORKFLOW_SWEEP_ENABLED", "true")
    monkeypatch.setenv("WORKFLOW_CORS_ORIGINS", "https://app.example.com, ,http://localhost:3000")
    settings = ServerSettings(_env_file=None)

    assert settings.sweep_enabled is True
    assert settings.parsed_cors_origins() == ["https://app.example.com", "http://localhost:3000"]
