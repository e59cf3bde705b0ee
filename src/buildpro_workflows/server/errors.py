"""Maps workflow errors onto HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from buildpro_workflows.engine.workflow.errors import (
    AuthorizationError,
    AutomaticTransitionLoop,
    ConcurrencyError,
    NotFoundError,
    StructuralError,
    WorkflowError,
    WorkflowValidationError,
)

logger = logging.getLogger(__name__)

# Checked in order; the first matching class wins.
_STATUS_BY_CATEGORY: tuple[tuple[type[WorkflowError], int], ...] = (
    (AutomaticTransitionLoop, 422),
    (WorkflowValidationError, 422),
    (NotFoundError, 404),
    (ConcurrencyError, 409),
    (StructuralError, 409),
    (AuthorizationError, 403),
)


def status_for(error: WorkflowError) -> int:
    for category, status in _STATUS_BY_CATEGORY:
        if isinstance(error, category):
            return status
    return 400


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    status = status_for(exc)
    logger.info(
        "Workflow request rejected",
        extra={
            "error": exc.kind,
            "status_code": status,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(
        status_code=status,
        content={"error": exc.kind, "detail": exc.message, **exc.details()},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WorkflowError, workflow_error_handler)
