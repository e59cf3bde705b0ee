"""Approval-workflow domain.

This package holds first-class types for:
- Workflow templates (stage/transition graphs) and their validation
- Workflow instances, executed against an immutable template snapshot
- The append-only history ledger and replay
- Assignment, deadlines, notifications and analytics

Instances advance only through versioned, all-or-nothing steps so that concurrent actors
can never double-advance a workflow.
"""

from buildpro_workflows.engine.workflow.authz import Actor, Capability
from buildpro_workflows.engine.workflow.errors import WorkflowError
from buildpro_workflows.engine.workflow.models import (
    EntityType,
    HistoryEntry,
    Stage,
    StageType,
    Transition,
    TransitionAction,
    WorkflowInstance,
    WorkflowStatus,
    WorkflowTemplate,
)
from buildpro_workflows.engine.workflow.state_machine import WorkflowEngine

__all__ = [
    "Actor",
    "Capability",
    "EntityType",
    "HistoryEntry",
    "Stage",
    "StageType",
    "Transition",
    "TransitionAction",
    "WorkflowEngine",
    "WorkflowError",
    "WorkflowInstance",
    "WorkflowStatus",
    "WorkflowTemplate",
]
