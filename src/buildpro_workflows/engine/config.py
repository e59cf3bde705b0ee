"""Configuration for the approval-workflow engine.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Collaborators never read settings from module globals; the runtime builds them from an
explicit :class:`EngineSettings` instance (see :mod:`buildpro_workflows.engine.runtime`).
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Settings for the workflow engine.

    Environment variables:
    - LOG_LEVEL                    (optional)
    - WORKFLOW_STATE_PATH          (optional)
    - WORKFLOW_DUE_SOON_HOURS      (optional)
    - WORKFLOW_MAX_AUTOMATIC_HOPS  (optional)
    - WORKFLOW_ADMIN_ROLES         (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `EngineSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    state_path: Path = Field(
        default=Path("workflow_state"),
        validation_alias="WORKFLOW_STATE_PATH",
        description="Directory where templates, instances and history are persisted",
    )

    due_soon_hours: int = Field(
        default=24,
        validation_alias="WORKFLOW_DUE_SOON_HOURS",
        description="Window (hours) before a stage due date in which a task counts as due soon",
        gt=0,
    )

    max_automatic_hops: int = Field(
        default=64,
        validation_alias="WORKFLOW_MAX_AUTOMATIC_HOPS",
        description=(
            "Maximum number of automatic transitions fired in a row before the engine gives up "
            "with AutomaticTransitionLoop."
        ),
        ge=1,
        le=1024,
    )

    admin_roles: str = Field(
        default="admin",
        validation_alias="WORKFLOW_ADMIN_ROLES",
        description="Comma-separated project roles that may act on any stage (assignment override).",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    def parsed_admin_roles(self) -> frozenset[str]:
        return frozenset(r.strip() for r in self.admin_roles.split(",") if r.strip())

    @property
    def templates_file(self) -> Path:
        """Path where workflow templates are persisted."""

        return self.state_path / "templates.json"

    @property
    def workflows_file(self) -> Path:
        """Path where workflow instances and their history are persisted."""

        return self.state_path / "workflows.json"

    @property
    def members_file(self) -> Path:
        return self.state_path / "project_members.json"

    @property
    def notifications_file(self) -> Path:
        return self.state_path / "notifications.json"

    @property
    def sweep_claims_file(self) -> Path:
        return self.state_path / "sweep_claims.json"
