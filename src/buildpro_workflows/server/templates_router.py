"""Workflow template designer API.

All routes are mounted under `/api/v1` and must be registered before the workflow router:
`/workflows/templates` would otherwise be captured by `/workflows/{workflow_id}`.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from buildpro_workflows.engine.runtime import WorkflowRuntime
from buildpro_workflows.engine.workflow.authz import Actor, Capability
from buildpro_workflows.engine.workflow.models import (
    EntityType,
    TemplateChanges,
    TemplateDraft,
    TemplateGraph,
    WorkflowTemplate,
)
from buildpro_workflows.engine.workflow.validation import validate_template
from buildpro_workflows.server.dependencies import current_actor, get_runtime
from buildpro_workflows.server.models import DuplicateTemplateRequest, ValidationReport

router = APIRouter(prefix="/workflows/templates", tags=["templates"])


def _report(graph: TemplateGraph) -> ValidationReport:
    errors = validate_template(graph)
    return ValidationReport(valid=not errors, errors=[e.to_json() for e in errors])


@router.get("", response_model=list[WorkflowTemplate])
def list_templates(
    entity_type: EntityType | None = None,
    active_only: bool = Query(default=False),
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> list[WorkflowTemplate]:
    return runtime.templates.list_by_entity_type(entity_type, active_only=active_only)


@router.post("", response_model=WorkflowTemplate, status_code=201)
def create_template(
    draft: TemplateDraft,
    actor: Actor = Depends(current_actor),
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> WorkflowTemplate:
    actor.require(Capability.CREATE_WORKFLOW_TEMPLATE)
    return runtime.templates.create(draft, created_by=actor.user_id)


@router.post("/validate", response_model=ValidationReport)
def validate_graph(graph: TemplateGraph) -> ValidationReport:
    """Dry-run the validator on an unsaved graph."""

    return _report(graph)


@router.get("/{template_id}", response_model=WorkflowTemplate)
def get_template(
    template_id: str, runtime: WorkflowRuntime = Depends(get_runtime)
) -> WorkflowTemplate:
    return runtime.templates.get(template_id)


@router.put("/{template_id}", response_model=WorkflowTemplate)
def update_template(
    template_id: str,
    changes: TemplateChanges,
    actor: Actor = Depends(current_actor),
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> WorkflowTemplate:
    actor.require(Capability.EDIT_WORKFLOW_TEMPLATE)
    return runtime.templates.update(template_id, changes)


@router.delete("/{template_id}", status_code=204)
def delete_template(
    template_id: str,
    actor: Actor = Depends(current_actor),
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> Response:
    actor.require(Capability.DELETE_WORKFLOW_TEMPLATE)
    runtime.templates.delete(template_id)
    return Response(status_code=204)


@router.post("/{template_id}/duplicate", response_model=WorkflowTemplate, status_code=201)
def duplicate_template(
    template_id: str,
    req: DuplicateTemplateRequest | None = None,
    actor: Actor = Depends(current_actor),
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> WorkflowTemplate:
    actor.require(Capability.CREATE_WORKFLOW_TEMPLATE)
    return runtime.templates.duplicate(
        template_id, name=req.name if req else None, created_by=actor.user_id
    )


@router.put("/{template_id}/set-default", response_model=WorkflowTemplate)
def set_default_template(
    template_id: str,
    actor: Actor = Depends(current_actor),
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> WorkflowTemplate:
    actor.require(Capability.EDIT_WORKFLOW_TEMPLATE)
    return runtime.templates.set_default(template_id)


@router.post("/{template_id}/validate", response_model=ValidationReport)
def validate_stored_template(
    template_id: str, runtime: WorkflowRuntime = Depends(get_runtime)
) -> ValidationReport:
    return _report(runtime.templates.get(template_id))
