"""Workflow execution, task queue and analytics API.

All routes are mounted under `/api/v1`. Collection-style paths (`/workflows/tasks/...`,
`/workflows/project/...`) are declared before `/workflows/{workflow_id}` routes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query

from buildpro_workflows.engine.runtime import WorkflowRuntime
from buildpro_workflows.engine.workflow.analytics import ProjectStats, Window
from buildpro_workflows.engine.workflow.authz import Actor
from buildpro_workflows.engine.workflow.deadlines import TaskFilters, TaskQueue, Urgency
from buildpro_workflows.engine.workflow.events import NotificationEvent, NotificationKind
from buildpro_workflows.engine.workflow.models import (
    EntityType,
    HistoryEntry,
    Transition,
    WorkflowInstance,
    WorkflowStatus,
)
from buildpro_workflows.server.dependencies import current_actor, get_runtime
from buildpro_workflows.server.models import (
    AnalyticsReport,
    ApiWorkflow,
    ApplyTransitionRequest,
    CancelWorkflowRequest,
    StartWorkflowRequest,
)

router = APIRouter(tags=["workflows"])


def _to_api(runtime: WorkflowRuntime, instance: WorkflowInstance) -> ApiWorkflow:
    return ApiWorkflow.model_validate(
        {
            **instance.model_dump(),
            "urgency": runtime.scheduler.classify(instance),
            "current_stage_name": instance.current_stage.display_name,
        }
    )


def _window(
    runtime: WorkflowRuntime,
    days: int | None,
    start_date: datetime | None,
    end_date: datetime | None,
) -> Window:
    if start_date is not None or end_date is not None:
        return Window(start=start_date, end=end_date)
    if days is not None:
        return Window.last_days(days, runtime.clock())
    return Window()


@router.post("/workflows/start", response_model=ApiWorkflow, status_code=201)
def start_workflow(
    req: StartWorkflowRequest,
    actor: Actor = Depends(current_actor),
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> ApiWorkflow:
    instance = runtime.engine.start_workflow(
        entity_type=req.entity_type,
        entity_id=req.entity_id,
        project_id=req.project_id,
        actor=actor,
        template_id=req.template_id,
    )
    return _to_api(runtime, instance)


@router.get("/workflows/entity/{entity_type}/{entity_id}", response_model=ApiWorkflow | None)
def workflow_for_entity(
    entity_type: EntityType,
    entity_id: str,
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> ApiWorkflow | None:
    instance = runtime.engine.workflow_for_entity(entity_type, entity_id)
    return None if instance is None else _to_api(runtime, instance)


@router.get("/workflows/tasks/my-tasks", response_model=TaskQueue)
def my_tasks(
    project_id: str,
    entity_type: EntityType | None = None,
    urgency: Urgency | None = None,
    search: str | None = None,
    actor: Actor = Depends(current_actor),
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> TaskQueue:
    return runtime.scheduler.my_tasks(
        actor,
        project_id,
        TaskFilters(entity_type=entity_type, urgency=urgency, search=search),
    )


@router.get("/workflows/stats/project/{project_id}", response_model=ProjectStats)
def project_stats(
    project_id: str,
    days: int | None = Query(default=None, ge=1),
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> ProjectStats:
    return runtime.analytics.project_stats(project_id, _window(runtime, days, None, None))


@router.get("/workflows/analytics/project/{project_id}", response_model=AnalyticsReport)
def project_analytics(
    project_id: str,
    days: int | None = Query(default=30, ge=1),
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> AnalyticsReport:
    window = _window(runtime, days, start_date, end_date)
    analytics = runtime.analytics
    return AnalyticsReport(
        project_id=project_id,
        days=None if start_date or end_date else days,
        sla_compliance_rate=analytics.sla_compliance_rate(project_id, window),
        avg_completion_days=analytics.completion_times_by_entity_type(
            window, project_id=project_id
        ),
        bottlenecks=analytics.stage_bottlenecks(window, project_id=project_id),
    )


@router.get("/workflows/project/{project_id}", response_model=list[ApiWorkflow])
def list_project_workflows(
    project_id: str,
    status: WorkflowStatus | None = None,
    entity_type: EntityType | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> list[ApiWorkflow]:
    instances = runtime.engine.list_workflows(
        project_id,
        status=status,
        entity_type=entity_type,
        completed_from=start_date,
        completed_to=end_date,
    )
    return [_to_api(runtime, i) for i in instances]


@router.get("/workflows/{workflow_id}", response_model=ApiWorkflow)
def get_workflow(
    workflow_id: str, runtime: WorkflowRuntime = Depends(get_runtime)
) -> ApiWorkflow:
    return _to_api(runtime, runtime.engine.get_workflow(workflow_id))


@router.get("/workflows/{workflow_id}/transitions", response_model=list[Transition])
def available_transitions(
    workflow_id: str,
    actor: Actor = Depends(current_actor),
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> list[Transition]:
    return runtime.engine.list_available_transitions(workflow_id, actor)


@router.post("/workflows/{workflow_id}/transition", response_model=ApiWorkflow)
def apply_transition(
    workflow_id: str,
    req: ApplyTransitionRequest,
    actor: Actor = Depends(current_actor),
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> ApiWorkflow:
    expected = req.expected_version
    if expected is None:
        expected = runtime.engine.get_workflow(workflow_id).version
    instance = runtime.engine.apply_transition(
        workflow_id,
        req.transition_id,
        actor=actor,
        expected_version=expected,
        comments=req.comments,
    )
    return _to_api(runtime, instance)


@router.post("/workflows/{workflow_id}/cancel", response_model=ApiWorkflow)
def cancel_workflow(
    workflow_id: str,
    req: CancelWorkflowRequest | None = None,
    actor: Actor = Depends(current_actor),
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> ApiWorkflow:
    req = req or CancelWorkflowRequest()
    instance = runtime.engine.cancel_workflow(
        workflow_id,
        actor=actor,
        reason=req.reason,
        expected_version=req.expected_version,
    )
    return _to_api(runtime, instance)


@router.get("/workflows/{workflow_id}/history", response_model=list[HistoryEntry])
def workflow_history(
    workflow_id: str, runtime: WorkflowRuntime = Depends(get_runtime)
) -> list[HistoryEntry]:
    return runtime.engine.history(workflow_id)


@router.get("/workflows/{workflow_id}/replay")
def replay_workflow(
    workflow_id: str, runtime: WorkflowRuntime = Depends(get_runtime)
) -> dict[str, Any]:
    """Compare stored state with what the history ledger rebuilds."""

    instance = runtime.engine.get_workflow(workflow_id)
    replayed = runtime.engine.replay_workflow(workflow_id)
    return {
        "workflow_id": workflow_id,
        "current_stage_id": replayed.current_stage_id,
        "status": replayed.status.value,
        "version": replayed.version,
        "consistent": (
            replayed.current_stage_id == instance.current_stage_id
            and replayed.status == instance.status
            and replayed.version == instance.version
        ),
    }


@router.get("/notifications", response_model=list[NotificationEvent])
def my_notifications(
    kind: NotificationKind | None = None,
    workflow_id: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    actor: Actor = Depends(current_actor),
    runtime: WorkflowRuntime = Depends(get_runtime),
) -> list[NotificationEvent]:
    events = runtime.notifications.list(
        recipient=actor.user_id, workflow_id=workflow_id, kind=kind
    )
    return events[:limit]
