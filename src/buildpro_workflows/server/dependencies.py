"""Request-scoped dependencies shared by the routers."""

from __future__ import annotations

from fastapi import Header, HTTPException, Request

from buildpro_workflows.engine.runtime import WorkflowRuntime
from buildpro_workflows.engine.workflow.authz import Actor


def _split(value: str | None) -> list[str]:
    if not value:
        return []
    return [p.strip() for p in value.split(",") if p.strip()]


def get_runtime(request: Request) -> WorkflowRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if not isinstance(runtime, WorkflowRuntime):
        # This should never happen for the real app, but keeps the API fail-fast.
        raise HTTPException(status_code=500, detail="Workflow runtime not configured")
    return runtime


def current_actor(
    x_user_id: str | None = Header(default=None),
    x_user_roles: str | None = Header(default=None),
    x_user_capabilities: str | None = Header(default=None),
) -> Actor:
    """Build the calling actor from the identity headers set by the upstream gateway."""

    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return Actor.of(
        user_id,
        roles=_split(x_user_roles),
        capabilities=_split(x_user_capabilities),
    )
