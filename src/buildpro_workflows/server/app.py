"""FastAPI app factory.

Endpoints are thin wrappers over the workflow runtime; business rules live in
`buildpro_workflows.engine.workflow`.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from buildpro_workflows import __version__
from buildpro_workflows.engine.config import EngineSettings
from buildpro_workflows.engine.logging import configure_logging
from buildpro_workflows.engine.runtime import WorkflowRuntime, build_runtime
from buildpro_workflows.server.config import ServerSettings
from buildpro_workflows.server.errors import install_error_handlers
from buildpro_workflows.server.sweep_runner import SweepRunner
from buildpro_workflows.server.templates_router import router as templates_router
from buildpro_workflows.server.workflows_router import router as workflows_router

logger = logging.getLogger(__name__)


def create_app(runtime: WorkflowRuntime | None = None) -> FastAPI:
    settings = ServerSettings()
    if runtime is None:
        engine_settings = EngineSettings()
        configure_logging(engine_settings.log_level)
        runtime = build_runtime(engine_settings)

    sweep_runner = (
        SweepRunner(runtime.sweep, interval_seconds=settings.sweep_interval_seconds)
        if settings.sweep_enabled
        else None
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if sweep_runner is not None:
            sweep_runner.start()
        try:
            yield
        finally:
            if sweep_runner is not None:
                sweep_runner.stop()

    app = FastAPI(
        title="BuildPro Workflows",
        version=__version__,
        description="REST API over the approval-workflow engine.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    # Expose settings and runtime for request handlers.
    app.state.settings = settings
    app.state.runtime = runtime
    app.state.sweep_runner = sweep_runner

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    # Templates first: `/workflows/templates` must not be captured by `/workflows/{id}`.
    app.include_router(templates_router, prefix="/api/v1")
    app.include_router(workflows_router, prefix="/api/v1")

    @app.get("/api/v1/health")
    def health() -> dict[str, object]:
        return {
            "status": "ok",
            "version": __version__,
            "sweep_enabled": sweep_runner is not None,
        }

    logger.info(
        "Workflow API configured",
        extra={
            "state_path": str(runtime.settings.state_path),
            "sweep_enabled": settings.sweep_enabled,
        },
    )
    return app
