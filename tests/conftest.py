"""Test configuration and fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from buildpro_workflows.engine.config import EngineSettings
from buildpro_workflows.engine.runtime import WorkflowRuntime, build_runtime
from buildpro_workflows.engine.workflow.authz import Actor, Capability
from buildpro_workflows.engine.workflow.directory import ProjectMember
from buildpro_workflows.engine.workflow.models import (
    TemplateDraft,
    TransitionAction,
    WorkflowInstance,
    WorkflowTemplate,
)

PROJECT_ID = "tower-a"


class FrozenClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def review_graph(
    *, review_sla: int = 24, approval_sla: int = 48, review_role: str = "reviewer"
) -> dict[str, Any]:
    """Start -> Review -> Approval -> Approved, with reject exits and a return edge."""

    return {
        "stages": [
            {"id": "start", "stage_type": "start", "stage_name": "Submitted"},
            {
                "id": "review",
                "stage_number": 1,
                "stage_type": "review",
                "stage_name": "Review",
                "sla_hours": review_sla,
                "assignment_rules": {"type": "role", "role": review_role},
                "allowed_actions": ["approve", "reject", "revise"],
            },
            {
                "id": "approval",
                "stage_number": 2,
                "stage_type": "approval",
                "stage_name": "Approval",
                "sla_hours": approval_sla,
                "assignment_rules": {"type": "role", "role": "approver"},
                "allowed_actions": ["approve", "reject", "return"],
            },
            {"id": "approved", "stage_type": "end", "stage_name": "Approved"},
            {"id": "rejected", "stage_type": "end", "stage_name": "Rejected"},
        ],
        "transitions": [
            {
                "id": "t-submit",
                "from_stage_id": "start",
                "to_stage_id": "review",
                "transition_action": "forward",
            },
            {
                "id": "t-review-approve",
                "from_stage_id": "review",
                "to_stage_id": "approval",
                "transition_action": "approve",
            },
            {
                "id": "t-review-reject",
                "from_stage_id": "review",
                "to_stage_id": "rejected",
                "transition_action": "reject",
            },
            {
                "id": "t-review-revise",
                "from_stage_id": "review",
                "to_stage_id": "review",
                "transition_action": "revise",
            },
            {
                "id": "t-approval-approve",
                "from_stage_id": "approval",
                "to_stage_id": "approved",
                "transition_action": "approve",
            },
            {
                "id": "t-approval-return",
                "from_stage_id": "approval",
                "to_stage_id": "review",
                "transition_action": "return",
            },
            {
                "id": "t-approval-reject",
                "from_stage_id": "approval",
                "to_stage_id": "rejected",
                "transition_action": "reject",
            },
        ],
    }


def fast_track_graph() -> dict[str, Any]:
    """The review graph with a second exit from start that skips straight to Approval."""

    graph = review_graph()
    graph["transitions"].insert(
        0,
        {
            "id": "t-fast-track",
            "from_stage_id": "start",
            "to_stage_id": "approval",
            "transition_action": "approve",
        },
    )
    return graph


def make_actor(user_id: str, *roles: str, capabilities: tuple[Capability, ...] = ()) -> Actor:
    return Actor.of(user_id, roles=roles, capabilities=capabilities)


def take(
    runtime: WorkflowRuntime,
    workflow: WorkflowInstance,
    action: str,
    *,
    actor: Actor | None = None,
    comments: str | None = None,
) -> WorkflowInstance:
    """Apply the offered transition with ``action`` as the current assignee (or ``actor``)."""

    actor = actor or make_actor(workflow.assigned_to or "nobody")
    offered = runtime.engine.list_available_transitions(workflow.id, actor)
    transition = next(t for t in offered if t.transition_action == TransitionAction(action))
    return runtime.engine.apply_transition(
        workflow.id,
        transition.id,
        actor=actor,
        expected_version=workflow.version,
        comments=comments,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 3, 4, 9, 0, tzinfo=UTC))


@pytest.fixture
def settings(tmp_path: Path) -> EngineSettings:
    return EngineSettings(
        _env_file=None,
        WORKFLOW_STATE_PATH=tmp_path / "state",
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def runtime(settings: EngineSettings, clock: FrozenClock) -> WorkflowRuntime:
    rt = build_runtime(settings, clock=clock)
    for user_id, roles in (
        ("alice", ["reviewer"]),
        ("bob", ["Reviewer"]),
        ("carol", ["approver"]),
        ("erin", ["admin"]),
        ("sam", ["project_manager"]),
    ):
        rt.directory.upsert(ProjectMember(project_id=PROJECT_ID, user_id=user_id, roles=roles))
    return rt


@pytest.fixture
def starter() -> Actor:
    return make_actor(
        "sam",
        "project_manager",
        capabilities=(Capability.START_WORKFLOW, Capability.CANCEL_WORKFLOW),
    )


@pytest.fixture
def submittal_template(runtime: WorkflowRuntime) -> WorkflowTemplate:
    draft = TemplateDraft.model_validate(
        {
            **review_graph(),
            "name": "Standard Submittal Review",
            "entity_type": "submittal",
            "is_active": True,
            "is_default": True,
        }
    )
    return runtime.templates.create(draft, created_by="designer")
