"""Aggregate workflow metrics derived from instances and the history ledger.

All queries are read-only; they tolerate a lagging copy of the ledger.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from statistics import fmean

from pydantic import BaseModel, field_serializer

from .deadlines import DeadlineScheduler, Urgency
from .history import HistoryLedger, stage_dwell_hours
from .models import EntityType, WorkflowInstance, WorkflowStatus
from .state_store import WorkflowStateStore


@dataclass(frozen=True, slots=True)
class Window:
    """Inclusive time window; an open side is unbounded."""

    start: datetime | None = None
    end: datetime | None = None

    @classmethod
    def last_days(cls, days: int, now: datetime) -> Window:
        return cls(start=now - timedelta(days=days), end=now)

    def contains(self, ts: datetime | None) -> bool:
        if ts is None:
            return False
        if self.start is not None and ts < self.start:
            return False
        if self.end is not None and ts > self.end:
            return False
        return True


ALL_TIME = Window()


class StageBottleneck(BaseModel):
    stage_name: str
    average_hours: float
    samples: int


class ProjectStats(BaseModel):
    project_id: str
    total: int
    active: int
    completed: int
    rejected: int
    cancelled: int
    overdue: int
    due_soon: int
    sla_compliance_rate: float

    @field_serializer("sla_compliance_rate")
    def _one_decimal(self, rate: float) -> float:
        return round(rate, 1)


class AnalyticsAggregator:
    def __init__(
        self,
        state: WorkflowStateStore,
        ledger: HistoryLedger,
        scheduler: DeadlineScheduler,
    ) -> None:
        self._state = state
        self._ledger = ledger
        self._scheduler = scheduler

    def _completed(
        self,
        window: Window,
        *,
        project_id: str | None = None,
        entity_type: EntityType | None = None,
    ) -> list[WorkflowInstance]:
        return [
            i
            for i in self._state.list(
                project_id=project_id, status=WorkflowStatus.COMPLETED, entity_type=entity_type
            )
            if window.contains(i.completed_at)
        ]

    def sla_compliance_rate(self, project_id: str | None, window: Window = ALL_TIME) -> float:
        """Percentage of completed workflows that finished within SLA (0.0 when none did)."""

        done = self._completed(window, project_id=project_id)
        if not done:
            return 0.0
        within = sum(1 for i in done if i.completed_within_sla)
        return 100.0 * within / len(done)

    def avg_completion_time(
        self,
        entity_type: EntityType,
        window: Window = ALL_TIME,
        *,
        project_id: str | None = None,
    ) -> float | None:
        """Mean days from start to completion, or None without data."""

        durations = [
            (i.completed_at - i.started_at).total_seconds() / 86400.0
            for i in self._completed(window, project_id=project_id, entity_type=entity_type)
            if i.completed_at is not None
        ]
        return fmean(durations) if durations else None

    def completion_times_by_entity_type(
        self, window: Window = ALL_TIME, *, project_id: str | None = None
    ) -> dict[EntityType, float]:
        out: dict[EntityType, float] = {}
        for entity_type in EntityType:
            avg = self.avg_completion_time(entity_type, window, project_id=project_id)
            if avg is not None:
                out[entity_type] = round(avg, 2)
        return out

    def stage_bottlenecks(
        self, window: Window = ALL_TIME, *, project_id: str | None = None
    ) -> list[StageBottleneck]:
        """Mean dwell hours per stage name, worst first.

        Each pair of consecutive history entries for a workflow is one visit; the gap is
        charged to the stage being left. A visit counts when it ended inside ``window``.
        """

        instances = {i.id: i for i in self._state.list(project_id=project_id)}
        samples: dict[str, list[float]] = defaultdict(list)
        for workflow_id, entries in self._ledger.grouped_by_workflow().items():
            instance = instances.get(workflow_id)
            if instance is None:
                continue
            dwell = stage_dwell_hours(entries)
            for (stage_id, hours), ended in zip(dwell, entries[1:], strict=True):
                if not window.contains(ended.transitioned_at):
                    continue
                stage = instance.template.stage(stage_id)
                if stage is None or stage.is_start or stage.is_end:
                    continue
                samples[stage.display_name].append(hours)

        out = [
            StageBottleneck(stage_name=name, average_hours=round(fmean(hours), 2), samples=len(hours))
            for name, hours in samples.items()
        ]
        out.sort(key=lambda b: (-b.average_hours, b.stage_name))
        return out

    def project_stats(self, project_id: str, window: Window = ALL_TIME) -> ProjectStats:
        instances = self._state.list(project_id=project_id)
        by_status = defaultdict(int)
        for i in instances:
            by_status[i.status] += 1
        urgency = self._scheduler.urgency_counts(project_id)
        return ProjectStats(
            project_id=project_id,
            total=len(instances),
            active=by_status[WorkflowStatus.ACTIVE],
            completed=by_status[WorkflowStatus.COMPLETED],
            rejected=by_status[WorkflowStatus.REJECTED],
            cancelled=by_status[WorkflowStatus.CANCELLED],
            overdue=urgency[Urgency.OVERDUE],
            due_soon=urgency[Urgency.DUE_SOON],
            sla_compliance_rate=self.sla_compliance_rate(project_id, window),
        )
