"""Works out who is responsible for a stage.

Resolution never blocks the state machine: any rule that cannot produce a user degrades to
an unassigned :class:`Assignment`, and the engine turns that into an ``assignment_failed``
notification instead of an error.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from .directory import ProjectDirectory
from .models import (
    START_ACTION,
    HistoryEntry,
    PreviousActorAssignment,
    RoleAssignment,
    Stage,
    UserAssignment,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AssignmentContext:
    workflow_id: str
    project_id: str
    history: Sequence[HistoryEntry] = ()
    current_assignee: str | None = None


@dataclass(frozen=True, slots=True)
class Assignment:
    user_id: str | None
    reason: str

    @property
    def is_unassigned(self) -> bool:
        return self.user_id is None

    @classmethod
    def unassigned(cls, reason: str) -> Assignment:
        return cls(user_id=None, reason=reason)


class AssignmentResolver:
    """Resolve a stage's assignment rule against the project team.

    Args:
        directory: Project membership lookup.
        workload: Returns, for a project, how many active workflows each user is assigned.
    """

    def __init__(
        self,
        directory: ProjectDirectory,
        workload: Callable[[str], Mapping[str, int]],
    ) -> None:
        self._directory = directory
        self._workload = workload

    def resolve(self, stage: Stage, context: AssignmentContext) -> Assignment:
        rule = stage.assignment_rules
        if rule is None:
            return Assignment.unassigned(f"stage {stage.display_name!r} has no assignment rule")

        try:
            if isinstance(rule, RoleAssignment):
                return self._by_role(rule.role, context)
            if isinstance(rule, UserAssignment):
                return self._by_user(rule.user_id, context)
            if isinstance(rule, PreviousActorAssignment):
                return self._previous_actor(context.history)
        except Exception:
            logger.exception(
                "Assignment lookup failed",
                extra={"workflow_id": context.workflow_id, "stage_id": stage.id},
            )
            return Assignment.unassigned("assignment lookup failed")

        return Assignment.unassigned(f"unsupported assignment rule {rule!r}")

    def _by_role(self, role: str, context: AssignmentContext) -> Assignment:
        candidates = self._directory.members_with_role(context.project_id, role)
        if not candidates:
            return Assignment.unassigned(f"no project member holds role {role!r}")

        load = dict(self._workload(context.project_id))
        # The instance being re-resolved still counts against its current assignee.
        if context.current_assignee and load.get(context.current_assignee, 0) > 0:
            load[context.current_assignee] -= 1

        chosen = min(candidates, key=lambda user_id: (load.get(user_id, 0), user_id))
        return Assignment(user_id=chosen, reason=f"role:{role}")

    def _by_user(self, user_id: str, context: AssignmentContext) -> Assignment:
        if not self._directory.is_member(context.project_id, user_id):
            return Assignment.unassigned(f"user {user_id} is no longer a project member")
        return Assignment(user_id=user_id, reason="user")

    @staticmethod
    def _previous_actor(history: Sequence[HistoryEntry]) -> Assignment:
        for entry in reversed(history):
            if entry.transition_action == START_ACTION:
                break
            if entry.is_system:
                continue
            return Assignment(user_id=entry.transitioned_by, reason="previous")
        return Assignment.unassigned("no previous actor recorded")
