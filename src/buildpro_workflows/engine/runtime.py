"""Wires the workflow collaborators together from an :class:`EngineSettings` instance.

Both the CLI and the REST server build exactly one runtime per process and pass it down.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from buildpro_workflows.engine.config import EngineSettings
from buildpro_workflows.engine.workflow.analytics import AnalyticsAggregator
from buildpro_workflows.engine.workflow.assignment import AssignmentResolver
from buildpro_workflows.engine.workflow.authz import OverridePolicy
from buildpro_workflows.engine.workflow.deadlines import (
    DeadlineScheduler,
    DeadlineSweep,
    SweepClaimStore,
)
from buildpro_workflows.engine.workflow.directory import ProjectDirectoryStore
from buildpro_workflows.engine.workflow.events import (
    FanoutSink,
    LoggingNotificationSink,
    NotificationStore,
)
from buildpro_workflows.engine.workflow.history import HistoryLedger
from buildpro_workflows.engine.workflow.state_machine import WorkflowEngine
from buildpro_workflows.engine.workflow.state_store import WorkflowStateStore
from buildpro_workflows.engine.workflow.templates import TemplateStore


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class WorkflowRuntime:
    settings: EngineSettings
    templates: TemplateStore
    state: WorkflowStateStore
    ledger: HistoryLedger
    directory: ProjectDirectoryStore
    notifications: NotificationStore
    engine: WorkflowEngine
    scheduler: DeadlineScheduler
    sweep: DeadlineSweep
    analytics: AnalyticsAggregator
    clock: Callable[[], datetime]


def build_runtime(
    settings: EngineSettings, *, clock: Callable[[], datetime] | None = None
) -> WorkflowRuntime:
    clock = clock or _utc_now
    settings.state_path.mkdir(parents=True, exist_ok=True)

    state = WorkflowStateStore(settings.workflows_file)
    templates = TemplateStore(
        settings.templates_file,
        has_active_instances=state.has_active_for_template,
        clock=clock,
    )
    directory = ProjectDirectoryStore(settings.members_file)
    notifications = NotificationStore(settings.notifications_file)
    sink = FanoutSink([notifications, LoggingNotificationSink()])

    engine = WorkflowEngine(
        templates=templates,
        state=state,
        resolver=AssignmentResolver(directory, state.active_assignment_counts),
        notifications=sink,
        override=OverridePolicy(admin_roles=settings.parsed_admin_roles()),
        max_automatic_hops=settings.max_automatic_hops,
        clock=clock,
    )
    scheduler = DeadlineScheduler(state, due_soon_hours=settings.due_soon_hours, clock=clock)
    ledger = HistoryLedger(state)

    return WorkflowRuntime(
        settings=settings,
        templates=templates,
        state=state,
        ledger=ledger,
        directory=directory,
        notifications=notifications,
        engine=engine,
        scheduler=scheduler,
        sweep=DeadlineSweep(
            state,
            scheduler,
            SweepClaimStore(settings.sweep_claims_file),
            sink,
            clock=clock,
        ),
        analytics=AnalyticsAggregator(state, ledger, scheduler),
        clock=clock,
    )
