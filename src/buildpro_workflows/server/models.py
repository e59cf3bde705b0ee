"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_serializer

from buildpro_workflows.engine.workflow.analytics import StageBottleneck
from buildpro_workflows.engine.workflow.deadlines import Urgency
from buildpro_workflows.engine.workflow.models import EntityType, WorkflowInstance


class StartWorkflowRequest(BaseModel):
    entity_type: EntityType
    entity_id: str = Field(min_length=1)
    project_id: str = Field(min_length=1)
    template_id: str | None = None


class ApplyTransitionRequest(BaseModel):
    transition_id: str = Field(min_length=1)
    comments: str | None = None
    # Version the client last saw. Omitting it means "whatever is current"; the store still
    # rejects the commit if another actor moves the workflow in between.
    expected_version: int | None = Field(default=None, ge=1)


class CancelWorkflowRequest(BaseModel):
    reason: str | None = None
    expected_version: int | None = Field(default=None, ge=1)


class DuplicateTemplateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1)


class ValidationReport(BaseModel):
    valid: bool
    errors: list[dict[str, Any]] = Field(default_factory=list)


class ApiWorkflow(WorkflowInstance):
    """A workflow instance as the UI sees it: stored state plus derived urgency."""

    urgency: Urgency = Urgency.NONE
    current_stage_name: str = ""


class AnalyticsReport(BaseModel):
    project_id: str
    days: int | None = None
    sla_compliance_rate: float
    avg_completion_days: dict[EntityType, float] = Field(default_factory=dict)
    bottlenecks: list[StageBottleneck] = Field(default_factory=list)

    @field_serializer("sla_compliance_rate")
    def _one_decimal(self, rate: float) -> float:
        return round(rate, 1)
