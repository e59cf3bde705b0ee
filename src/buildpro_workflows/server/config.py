"""Configuration for the REST server.

Engine settings (state path, deadlines, admin roles) come from
:class:`buildpro_workflows.engine.config.EngineSettings`; this only covers what the HTTP
adapter adds on top.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Settings for the REST API and its background deadline sweep."""

    sweep_enabled: bool = Field(
        default=False,
        validation_alias="WORKFLOW_SWEEP_ENABLED",
        description=(
            "If true, the server periodically runs the deadline sweep and emits due-soon / "
            "overdue notifications. Safe to enable on several replicas."
        ),
    )
    sweep_interval_seconds: float = Field(
        default=300.0,
        validation_alias="WORKFLOW_SWEEP_INTERVAL_SECONDS",
        description="Polling interval (seconds) for the deadline sweep when enabled.",
        gt=0,
    )

    # Dev-friendly CORS (Vite). Override via WORKFLOW_CORS_ORIGINS=...
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="WORKFLOW_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
