"""Workflow error taxonomy.

Every error carries a stable ``kind`` so API clients can branch on it. The intermediate
classes mirror how callers are expected to react:

- :class:`WorkflowValidationError`: rejected input; nothing was written.
- :class:`ConcurrencyError`: retry with fresh state.
- :class:`AuthorizationError`: the actor may not do this.
- :class:`StructuralError`: the operation would break a structural guard.
- :class:`NotFoundError`: the referenced template or workflow does not exist.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .validation import GraphValidationError


class WorkflowError(Exception):
    kind = "workflow_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        """Extra machine-readable fields for API error bodies."""

        return {}


class WorkflowValidationError(WorkflowError):
    kind = "validation_error"


class ConcurrencyError(WorkflowError):
    kind = "concurrency_error"


class AuthorizationError(WorkflowError):
    kind = "authorization_error"


class StructuralError(WorkflowError):
    kind = "structural_error"


class NotFoundError(WorkflowError):
    kind = "not_found"

    def __init__(self, resource: str, resource_id: str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} id={resource_id} not found")


class TemplateNotFound(NotFoundError):
    kind = "template_not_found"

    def __init__(self, template_id: str) -> None:
        super().__init__("WorkflowTemplate", template_id)


class WorkflowNotFound(NotFoundError):
    kind = "workflow_not_found"

    def __init__(self, workflow_id: str) -> None:
        super().__init__("WorkflowInstance", workflow_id)


class TemplateValidationFailed(WorkflowValidationError):
    kind = "template_invalid"

    def __init__(self, errors: Sequence[GraphValidationError]) -> None:
        self.errors = list(errors)
        summary = "; ".join(e.message for e in self.errors[:3])
        if len(self.errors) > 3:
            summary += f" (+{len(self.errors) - 3} more)"
        super().__init__(f"Template graph is invalid: {summary}")

    def details(self) -> dict[str, Any]:
        return {"errors": [e.to_json() for e in self.errors]}


class CommentsRequired(WorkflowValidationError):
    kind = "comments_required"

    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__(f"Comments are required for action {action!r}")


class UnknownTransition(WorkflowValidationError):
    kind = "unknown_transition"

    def __init__(self, transition_id: str, stage_id: str) -> None:
        self.transition_id = transition_id
        self.stage_id = stage_id
        super().__init__(
            f"Transition {transition_id!r} is not available from stage {stage_id!r}"
        )


class WorkflowNotActive(WorkflowValidationError):
    kind = "workflow_not_active"

    def __init__(self, workflow_id: str, status: str) -> None:
        self.workflow_id = workflow_id
        self.status = status
        super().__init__(f"Workflow {workflow_id} is {status}; no further transitions allowed")


class TemplateInactive(WorkflowValidationError):
    kind = "template_inactive"

    def __init__(self, template_id: str) -> None:
        self.template_id = template_id
        super().__init__(f"Template {template_id} is not active")


class NoDefaultTemplate(WorkflowValidationError):
    kind = "no_default_template"

    def __init__(self, entity_type: str) -> None:
        self.entity_type = entity_type
        super().__init__(f"No active default template for entity type {entity_type!r}")


class VersionConflict(ConcurrencyError):
    kind = "version_conflict"

    def __init__(self, workflow_id: str, expected: int, actual: int) -> None:
        self.workflow_id = workflow_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Workflow {workflow_id} is at version {actual}, not {expected}; reload and retry"
        )

    def details(self) -> dict[str, Any]:
        return {"expected_version": self.expected, "current_version": self.actual}


class NotAssignee(AuthorizationError):
    kind = "not_assignee"

    def __init__(self, workflow_id: str, user_id: str) -> None:
        self.workflow_id = workflow_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is not the assignee of workflow {workflow_id}")


class MissingCapability(AuthorizationError):
    kind = "missing_capability"

    def __init__(self, capability: str, user_id: str) -> None:
        self.capability = capability
        self.user_id = user_id
        super().__init__(f"User {user_id} lacks capability {capability!r}")

    def details(self) -> dict[str, Any]:
        return {"capability": self.capability}


class AutomaticTransitionLoop(StructuralError):
    kind = "automatic_transition_loop"

    def __init__(self, workflow_id: str, hops: int) -> None:
        self.workflow_id = workflow_id
        self.hops = hops
        super().__init__(
            f"Workflow {workflow_id} exceeded {hops} automatic transitions without settling"
        )


class DuplicateActiveWorkflow(StructuralError):
    kind = "duplicate_active_workflow"

    def __init__(self, entity_type: str, entity_id: str, existing_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.existing_id = existing_id
        super().__init__(
            f"An active workflow ({existing_id}) already exists for {entity_type} {entity_id}"
        )

    def details(self) -> dict[str, Any]:
        return {"existing_workflow_id": self.existing_id}


class TemplateLocked(StructuralError):
    kind = "template_locked"

    def __init__(self, template_id: str, reason: str) -> None:
        self.template_id = template_id
        super().__init__(f"Template {template_id} is locked: {reason}")


class TemplateAlreadyExists(StructuralError):
    kind = "template_exists"

    def __init__(self, template_id: str) -> None:
        self.template_id = template_id
        super().__init__(f"A template with id {template_id} already exists")
