"""The workflow execution engine.

An instance is ``active`` while it sits on a non-end stage; the stage it sits on is its
sub-state. User actions move it along the transitions of the template snapshot it was
started with. Once it reaches an ``end`` stage (or is cancelled) it is terminal.

Every accepted step is written as one unit: the new instance state plus the history
entries describing how it got there. Nothing is written when a step fails validation, so a
rejected request leaves the instance exactly as it was.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from .assignment import AssignmentContext, AssignmentResolver
from .authz import Actor, Capability, OverridePolicy
from .errors import (
    AutomaticTransitionLoop,
    CommentsRequired,
    DuplicateActiveWorkflow,
    MissingCapability,
    NoDefaultTemplate,
    NotAssignee,
    TemplateInactive,
    UnknownTransition,
    VersionConflict,
    WorkflowNotActive,
    WorkflowNotFound,
    WorkflowValidationError,
)
from .events import NotificationEvent, NotificationKind, NotificationSink
from .history import ReplayedState, replay, stage_dwell_hours, terminal_status
from .models import (
    CANCEL_ACTION,
    COMMENT_REQUIRED_ACTIONS,
    START_ACTION,
    SYSTEM_ACTOR,
    EntityType,
    HistoryEntry,
    Stage,
    StageType,
    TemplateSnapshot,
    Transition,
    WorkflowInstance,
    WorkflowStatus,
)
from .state_store import WorkflowStateStore
from .templates import TemplateStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def sla_respected(graph: TemplateSnapshot, entries: Sequence[HistoryEntry]) -> bool:
    """True when no visited stage was held longer than its ``sla_hours``."""

    for stage_id, hours in stage_dwell_hours(entries):
        stage = graph.stage(stage_id)
        if stage is not None and stage.sla_hours > 0 and hours > stage.sla_hours:
            return False
    return True


@dataclass
class _Progress:
    """Pending changes for one engine operation, committed all at once."""

    instance: WorkflowInstance
    history: list[HistoryEntry]
    entries: list[HistoryEntry] = field(default_factory=list)
    events: list[NotificationEvent] = field(default_factory=list)

    def record(self, entry: HistoryEntry, *, bump_version: bool = True) -> None:
        self.entries.append(entry)
        self.history.append(entry)
        if bump_version:
            self.update(version=self.instance.version + 1)

    def update(self, **changes: object) -> None:
        self.instance = self.instance.model_copy(update=changes)

    def notify(
        self,
        kind: NotificationKind,
        message: str,
        *,
        recipients: Sequence[str | None],
        now: datetime,
        **details: object,
    ) -> None:
        self.events.append(
            NotificationEvent(
                kind=kind,
                workflow_id=self.instance.id,
                project_id=self.instance.project_id,
                recipients=sorted({r for r in recipients if r}),
                message=message,
                created_at=now,
                details=details,
            )
        )


class WorkflowEngine:
    """Starts and advances workflow instances.

    Args:
        templates: Template store (source of snapshots and defaults).
        state: Instance + history store.
        resolver: Assignment resolver used on every stage entry.
        notifications: Sink for side-effect events; only receives events for committed steps.
        override: Who may act on stages they are not assigned to.
        max_automatic_hops: Upper bound on consecutive automatic transitions.
        clock: Time source.
    """

    def __init__(
        self,
        *,
        templates: TemplateStore,
        state: WorkflowStateStore,
        resolver: AssignmentResolver,
        notifications: NotificationSink,
        override: OverridePolicy | None = None,
        max_automatic_hops: int = 64,
        clock: Clock = _utc_now,
    ) -> None:
        self._templates = templates
        self._state = state
        self._resolver = resolver
        self._notifications = notifications
        self._override = override or OverridePolicy()
        self._max_hops = max_automatic_hops
        self._clock = clock

    # Reads

    def get_workflow(self, workflow_id: str) -> WorkflowInstance:
        instance = self._state.get(workflow_id)
        if instance is None:
            raise WorkflowNotFound(workflow_id)
        return instance

    def workflow_for_entity(
        self, entity_type: EntityType, entity_id: str
    ) -> WorkflowInstance | None:
        return self._state.find_for_entity(entity_type, entity_id)

    def history(self, workflow_id: str) -> list[HistoryEntry]:
        self.get_workflow(workflow_id)
        return self._state.history(workflow_id)

    def list_workflows(
        self,
        project_id: str,
        *,
        status: WorkflowStatus | None = None,
        entity_type: EntityType | None = None,
        completed_from: datetime | None = None,
        completed_to: datetime | None = None,
    ) -> list[WorkflowInstance]:
        out = []
        for instance in self._state.list(
            project_id=project_id, status=status, entity_type=entity_type
        ):
            if completed_from is not None or completed_to is not None:
                done = instance.completed_at
                if done is None:
                    continue
                if completed_from is not None and done < completed_from:
                    continue
                if completed_to is not None and done > completed_to:
                    continue
            out.append(instance)
        out.sort(key=lambda i: i.started_at, reverse=True)
        return out

    def replay_workflow(self, workflow_id: str) -> ReplayedState:
        instance = self.get_workflow(workflow_id)
        return replay(instance.template, self._state.history(workflow_id))

    def can_act(self, instance: WorkflowInstance, actor: Actor) -> bool:
        if instance.assigned_to is not None and instance.assigned_to == actor.user_id:
            return True
        return self._override.allows(actor)

    def list_available_transitions(self, workflow_id: str, actor: Actor) -> list[Transition]:
        """Transitions the actor may take right now; empty when it is not their turn."""

        instance = self.get_workflow(workflow_id)
        if not instance.is_active or not self.can_act(instance, actor):
            return []
        return self._offered(instance)

    @staticmethod
    def _offered(instance: WorkflowInstance) -> list[Transition]:
        stage = instance.current_stage
        return [
            t
            for t in instance.template.outgoing(stage.id)
            if not t.is_automatic and t.transition_action in stage.allowed_actions
        ]

    # Writes

    def start_workflow(
        self,
        *,
        entity_type: EntityType,
        entity_id: str,
        project_id: str,
        actor: Actor,
        template_id: str | None = None,
    ) -> WorkflowInstance:
        actor.require(Capability.START_WORKFLOW)

        if template_id is None:
            template = self._templates.default_for(entity_type)
            if template is None:
                raise NoDefaultTemplate(entity_type.value)
        else:
            template = self._templates.get(template_id)
        if template.entity_type != entity_type:
            raise WorkflowValidationError(
                f"Template {template.id} is for {template.entity_type.value}, "
                f"not {entity_type.value}"
            )
        if not template.is_active:
            raise TemplateInactive(template.id)

        existing = self._state.find_for_entity(entity_type, entity_id)
        if existing is not None and existing.is_active:
            raise DuplicateActiveWorkflow(entity_type.value, entity_id, existing.id)

        snapshot = template.snapshot()
        start = snapshot.start_stages()[0]
        # First outgoing transition by insertion order is the entry path.
        entry_transition = snapshot.outgoing(start.id)[0]

        now = self._clock()
        workflow_id = uuid.uuid4().hex
        instance = WorkflowInstance(
            id=workflow_id,
            template_id=template.id,
            template=snapshot,
            entity_type=entity_type,
            entity_id=entity_id,
            project_id=project_id,
            current_stage_id=entry_transition.to_stage_id,
            current_stage_entered_at=now,
            started_by=actor.user_id,
            started_at=now,
            version=1,
        )
        progress = _Progress(instance=instance, history=[])
        progress.record(
            HistoryEntry(
                workflow_id=workflow_id,
                from_stage_id=start.id,
                to_stage_id=entry_transition.to_stage_id,
                transition_action=START_ACTION,
                transitioned_by=actor.user_id,
                transitioned_at=now,
                metadata={
                    "template_id": template.id,
                    "template_revision": template.revision,
                    "transition_id": entry_transition.id,
                },
            ),
            bump_version=False,
        )
        self._arrive(
            progress, entry_transition.to_stage_id, entry_transition.transition_action.value, now
        )
        self._run_automatic(progress, now)

        created = self._state.create(progress.instance, progress.entries)
        logger.info(
            "Workflow started",
            extra={
                "workflow_id": created.id,
                "template_id": template.id,
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "project_id": project_id,
                "stage_id": created.current_stage_id,
            },
        )
        self._emit(progress.events)
        return created

    def apply_transition(
        self,
        workflow_id: str,
        transition_id: str,
        *,
        actor: Actor,
        expected_version: int,
        comments: str | None = None,
    ) -> WorkflowInstance:
        instance = self.get_workflow(workflow_id)
        if expected_version != instance.version:
            raise VersionConflict(workflow_id, expected_version, instance.version)
        if not instance.is_active:
            raise WorkflowNotActive(workflow_id, instance.status.value)
        if not self.can_act(instance, actor):
            raise NotAssignee(workflow_id, actor.user_id)

        transition = next((t for t in self._offered(instance) if t.id == transition_id), None)
        if transition is None:
            raise UnknownTransition(transition_id, instance.current_stage_id)

        note = (comments or "").strip()
        if transition.transition_action in COMMENT_REQUIRED_ACTIONS and not note:
            raise CommentsRequired(transition.transition_action.value)

        now = self._clock()
        progress = _Progress(instance=instance, history=self._state.history(workflow_id))
        progress.record(
            HistoryEntry(
                workflow_id=workflow_id,
                from_stage_id=instance.current_stage_id,
                to_stage_id=transition.to_stage_id,
                transition_action=transition.transition_action.value,
                transitioned_by=actor.user_id,
                transitioned_at=now,
                comments=note or None,
                metadata={
                    "transition_id": transition.id,
                    "transition_name": transition.transition_name,
                },
            )
        )
        self._arrive(progress, transition.to_stage_id, transition.transition_action.value, now)
        self._run_automatic(progress, now)

        committed = self._state.commit(
            progress.instance, progress.entries, expected_version=expected_version
        )
        logger.info(
            "Workflow transition applied",
            extra={
                "workflow_id": workflow_id,
                "transition_id": transition.id,
                "action": transition.transition_action.value,
                "actor": actor.user_id,
                "version": committed.version,
                "status": committed.status.value,
            },
        )
        self._emit(progress.events)
        return committed

    def cancel_workflow(
        self,
        workflow_id: str,
        *,
        actor: Actor,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> WorkflowInstance:
        """Stop an active workflow from any stage. Not a graph transition."""

        if not (actor.can(Capability.CANCEL_WORKFLOW) or self._override.allows(actor)):
            raise MissingCapability(Capability.CANCEL_WORKFLOW.value, actor.user_id)

        instance = self.get_workflow(workflow_id)
        version = instance.version if expected_version is None else expected_version
        if version != instance.version:
            raise VersionConflict(workflow_id, version, instance.version)
        if not instance.is_active:
            raise WorkflowNotActive(workflow_id, instance.status.value)

        now = self._clock()
        previous_assignee = instance.assigned_to
        progress = _Progress(instance=instance, history=self._state.history(workflow_id))
        progress.record(
            HistoryEntry(
                workflow_id=workflow_id,
                from_stage_id=instance.current_stage_id,
                to_stage_id=instance.current_stage_id,
                transition_action=CANCEL_ACTION,
                transitioned_by=actor.user_id,
                transitioned_at=now,
                comments=(reason or "").strip() or None,
            )
        )
        progress.update(
            status=WorkflowStatus.CANCELLED,
            completed_at=now,
            current_stage_due_date=None,
            assigned_to=None,
            needs_assignment=False,
        )
        progress.notify(
            NotificationKind.WORKFLOW_CANCELLED,
            f"{instance.entity_type.value} {instance.entity_id} workflow was cancelled",
            recipients=[instance.started_by, previous_assignee],
            now=now,
            reason=reason,
            cancelled_by=actor.user_id,
        )

        committed = self._state.commit(
            progress.instance, progress.entries, expected_version=version
        )
        logger.info(
            "Workflow cancelled",
            extra={"workflow_id": workflow_id, "actor": actor.user_id, "reason": reason},
        )
        self._emit(progress.events)
        return committed

    # Internals

    def _arrive(self, progress: _Progress, stage_id: str, action: str, now: datetime) -> None:
        instance = progress.instance
        stage = instance.template.stage(stage_id)
        if stage is None:
            # Snapshots are validated before activation; this means a corrupt snapshot.
            raise WorkflowValidationError(f"Stage {stage_id} is not part of the bound template")

        if stage.is_end:
            self._finish(progress, stage, action, now)
            return

        transient = any(t.is_automatic for t in instance.template.outgoing(stage.id))
        due = None
        if stage.sla_hours > 0 and not transient:
            due = now + timedelta(hours=stage.sla_hours)
        progress.update(
            current_stage_id=stage.id,
            current_stage_entered_at=now,
            current_stage_due_date=due,
        )
        if transient:
            self._notify_stage(progress, stage, now)
            return

        assignment = self._resolver.resolve(
            stage,
            AssignmentContext(
                workflow_id=instance.id,
                project_id=instance.project_id,
                history=list(progress.history),
                current_assignee=instance.assigned_to,
            ),
        )
        progress.update(
            assigned_to=assignment.user_id, needs_assignment=assignment.is_unassigned
        )
        subject = f"{instance.entity_type.value} {instance.entity_id}"
        if assignment.is_unassigned:
            logger.warning(
                "Stage left unassigned",
                extra={
                    "workflow_id": instance.id,
                    "stage_id": stage.id,
                    "reason": assignment.reason,
                },
            )
            progress.notify(
                NotificationKind.ASSIGNMENT_FAILED,
                f"No assignee for {subject} at stage {stage.display_name!r}: {assignment.reason}",
                recipients=[instance.started_by],
                now=now,
                stage_id=stage.id,
                reason=assignment.reason,
            )
        else:
            progress.notify(
                NotificationKind.TASK_ASSIGNED,
                f"{subject} is waiting for you at stage {stage.display_name!r}",
                recipients=[assignment.user_id],
                now=now,
                stage_id=stage.id,
                due_date=due.isoformat() if due else None,
            )

    def _notify_stage(self, progress: _Progress, stage: Stage, now: datetime) -> None:
        """Pass-through stages only tell people; nobody is assigned to them."""

        if stage.stage_type != StageType.NOTIFY or stage.assignment_rules is None:
            return
        instance = progress.instance
        assignment = self._resolver.resolve(
            stage,
            AssignmentContext(
                workflow_id=instance.id,
                project_id=instance.project_id,
                history=list(progress.history),
            ),
        )
        if assignment.is_unassigned:
            return
        progress.notify(
            NotificationKind.STAGE_NOTICE,
            f"{instance.entity_type.value} {instance.entity_id} passed stage "
            f"{stage.display_name!r}",
            recipients=[assignment.user_id],
            now=now,
            stage_id=stage.id,
        )

    def _finish(self, progress: _Progress, stage: Stage, action: str, now: datetime) -> None:
        instance = progress.instance
        status = terminal_status(action)
        progress.update(
            status=status,
            current_stage_id=stage.id,
            current_stage_entered_at=now,
            current_stage_due_date=None,
            assigned_to=None,
            needs_assignment=False,
            completed_at=now,
            completed_within_sla=sla_respected(instance.template, progress.history),
        )
        kind = (
            NotificationKind.WORKFLOW_REJECTED
            if status == WorkflowStatus.REJECTED
            else NotificationKind.WORKFLOW_COMPLETED
        )
        progress.notify(
            kind,
            f"{instance.entity_type.value} {instance.entity_id} workflow {status.value}",
            recipients=[instance.started_by],
            now=now,
            completed_within_sla=progress.instance.completed_within_sla,
        )

    def _run_automatic(self, progress: _Progress, now: datetime) -> None:
        hops = 0
        while progress.instance.is_active:
            graph = progress.instance.template
            current = progress.instance.current_stage_id
            auto = next((t for t in graph.outgoing(current) if t.is_automatic), None)
            if auto is None:
                return
            hops += 1
            if hops > self._max_hops:
                raise AutomaticTransitionLoop(progress.instance.id, self._max_hops)
            progress.record(
                HistoryEntry(
                    workflow_id=progress.instance.id,
                    from_stage_id=current,
                    to_stage_id=auto.to_stage_id,
                    transition_action=auto.transition_action.value,
                    transitioned_by=SYSTEM_ACTOR,
                    transitioned_at=now,
                    metadata={"automatic": True, "transition_id": auto.id},
                )
            )
            self._arrive(progress, auto.to_stage_id, auto.transition_action.value, now)

    def _emit(self, events: Sequence[NotificationEvent]) -> None:
        for event in events:
            try:
                self._notifications.emit(event)
            except Exception:
                # Committed state stands regardless of delivery.
                logger.exception(
                    "Notification delivery failed",
                    extra={
                        "workflow_id": event.workflow_id,
                        "notification_kind": event.kind.value,
                    },
                )
