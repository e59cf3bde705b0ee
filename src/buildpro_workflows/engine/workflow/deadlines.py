"""Stage deadlines: urgency classification, task queues and the notification sweep.

Urgency is always derived from ``current_stage_due_date`` at read time and never stored.
The periodic sweep only emits notifications; it never touches instance state, and
per-instance claims make it safe to run several sweeps at once.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from .authz import Actor
from .events import NotificationEvent, NotificationKind, NotificationSink
from .models import EntityType, WorkflowInstance, WorkflowStatus
from .persistence import load_json, write_json_atomic
from .state_store import WorkflowStateStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DUE_SOON_WINDOW = timedelta(hours=24)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class Urgency(str, Enum):
    OVERDUE = "overdue"
    DUE_SOON = "due_soon"
    ON_TRACK = "on_track"
    NONE = "none"


URGENCY_ORDER: tuple[Urgency, ...] = (
    Urgency.OVERDUE,
    Urgency.DUE_SOON,
    Urgency.ON_TRACK,
    Urgency.NONE,
)


def classify_urgency(
    due_date: datetime | None,
    now: datetime,
    *,
    due_soon_window: timedelta = DUE_SOON_WINDOW,
) -> Urgency:
    if due_date is None:
        return Urgency.NONE
    if now > due_date:
        return Urgency.OVERDUE
    if due_date - now < due_soon_window:
        return Urgency.DUE_SOON
    return Urgency.ON_TRACK


@dataclass(frozen=True, slots=True)
class TaskFilters:
    entity_type: EntityType | None = None
    urgency: Urgency | None = None
    search: str | None = None


class Task(BaseModel):
    workflow: WorkflowInstance
    stage_name: str
    urgency: Urgency
    hours_until_due: float | None = None


class TaskQueue(BaseModel):
    tasks: list[Task] = Field(default_factory=list)
    groups: dict[Urgency, list[Task]] = Field(default_factory=dict)
    counts: dict[Urgency, int] = Field(default_factory=dict)


def _matches(task: Task, needle: str) -> bool:
    haystack = (
        task.workflow.entity_id,
        task.stage_name,
        task.workflow.template.name,
    )
    return any(needle in value.lower() for value in haystack)


class DeadlineScheduler:
    def __init__(
        self,
        state: WorkflowStateStore,
        *,
        due_soon_hours: int = 24,
        clock: Clock = _utc_now,
    ) -> None:
        self._state = state
        self._window = timedelta(hours=due_soon_hours)
        self._clock = clock

    def classify(self, instance: WorkflowInstance, now: datetime | None = None) -> Urgency:
        if not instance.is_active:
            return Urgency.NONE
        return classify_urgency(
            instance.current_stage_due_date,
            now or self._clock(),
            due_soon_window=self._window,
        )

    def _task(self, instance: WorkflowInstance, now: datetime) -> Task:
        due = instance.current_stage_due_date
        return Task(
            workflow=instance,
            stage_name=instance.current_stage.display_name,
            urgency=self.classify(instance, now),
            hours_until_due=None if due is None else round((due - now).total_seconds() / 3600, 2),
        )

    def my_tasks(
        self, actor: Actor, project_id: str, filters: TaskFilters | None = None
    ) -> TaskQueue:
        """Active workflows waiting on ``actor``, most urgent first."""

        filters = filters or TaskFilters()
        now = self._clock()
        tasks = [
            self._task(instance, now)
            for instance in self._state.list(
                project_id=project_id,
                status=WorkflowStatus.ACTIVE,
                entity_type=filters.entity_type,
                assigned_to=actor.user_id,
            )
        ]
        # Tier counts reflect the whole queue, before urgency/search narrowing.
        counts = Counter(t.urgency for t in tasks)

        if filters.urgency is not None:
            tasks = [t for t in tasks if t.urgency == filters.urgency]
        needle = (filters.search or "").strip().lower()
        if needle:
            tasks = [t for t in tasks if _matches(t, needle)]

        far_future = datetime.max.replace(tzinfo=UTC)
        tasks.sort(
            key=lambda t: (
                URGENCY_ORDER.index(t.urgency),
                t.workflow.current_stage_due_date or far_future,
            )
        )
        return TaskQueue(
            tasks=tasks,
            groups={u: [t for t in tasks if t.urgency == u] for u in URGENCY_ORDER},
            counts={u: counts.get(u, 0) for u in URGENCY_ORDER},
        )

    def urgency_counts(self, project_id: str) -> dict[Urgency, int]:
        now = self._clock()
        counts = Counter(
            self.classify(i, now)
            for i in self._state.list(project_id=project_id, status=WorkflowStatus.ACTIVE)
        )
        return {u: counts.get(u, 0) for u in URGENCY_ORDER}


class SweepClaimStore:
    """Remembers which (workflow, version, tier) crossings were already announced."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    def _load_unlocked(self) -> dict[str, str]:
        raw = load_json(self._path, {})
        return {str(k): str(v) for k, v in raw.items()} if isinstance(raw, dict) else {}

    def claim(self, key: str, now: datetime) -> bool:
        """Atomically take ``key``. Returns False if someone already holds it."""

        with self._lock:
            claims = self._load_unlocked()
            if key in claims:
                return False
            claims[key] = now.isoformat()
            write_json_atomic(self._path, claims)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            claims = self._load_unlocked()
            if claims.pop(key, None) is not None:
                write_json_atomic(self._path, claims)

    def prune(self, live_prefixes: Iterable[str]) -> int:
        """Drop claims whose ``workflow:version`` prefix is no longer live."""

        live = set(live_prefixes)
        with self._lock:
            claims = self._load_unlocked()
            kept = {k: v for k, v in claims.items() if k.rpartition(":")[0] in live}
            if len(kept) != len(claims):
                write_json_atomic(self._path, kept)
            return len(claims) - len(kept)


@dataclass(frozen=True, slots=True)
class SweepResult:
    scanned: int
    notified: list[NotificationEvent]


class DeadlineSweep:
    """Announces instances that entered the due-soon window or went overdue."""

    _KINDS = {
        Urgency.DUE_SOON: NotificationKind.DEADLINE_DUE_SOON,
        Urgency.OVERDUE: NotificationKind.DEADLINE_OVERDUE,
    }

    def __init__(
        self,
        state: WorkflowStateStore,
        scheduler: DeadlineScheduler,
        claims: SweepClaimStore,
        notifications: NotificationSink,
        *,
        clock: Clock = _utc_now,
    ) -> None:
        self._state = state
        self._scheduler = scheduler
        self._claims = claims
        self._notifications = notifications
        self._clock = clock

    def run(self, *, project_id: str | None = None) -> SweepResult:
        now = self._clock()
        active = self._state.list(project_id=project_id, status=WorkflowStatus.ACTIVE)
        notified: list[NotificationEvent] = []
        for instance in active:
            urgency = self._scheduler.classify(instance, now)
            kind = self._KINDS.get(urgency)
            if kind is None:
                continue
            # One announcement per tier per stage visit; version changes on every move.
            key = f"{instance.id}:{instance.version}:{urgency.value}"
            if not self._claims.claim(key, now):
                continue
            event = NotificationEvent(
                kind=kind,
                workflow_id=instance.id,
                project_id=instance.project_id,
                recipients=[instance.assigned_to] if instance.assigned_to else [],
                message=(
                    f"{instance.entity_type.value} {instance.entity_id} is "
                    f"{'overdue' if urgency == Urgency.OVERDUE else 'due soon'} "
                    f"at stage {instance.current_stage.display_name!r}"
                ),
                created_at=now,
                details={
                    "stage_id": instance.current_stage_id,
                    "due_date": instance.current_stage_due_date.isoformat()
                    if instance.current_stage_due_date
                    else None,
                    "unassigned": instance.assigned_to is None,
                },
            )
            try:
                self._notifications.emit(event)
            except Exception:
                # Unclaim so the next tick retries this notice.
                self._claims.release(key)
                logger.exception(
                    "Deadline notice delivery failed",
                    extra={"workflow_id": instance.id, "notification_kind": kind.value},
                )
                continue
            notified.append(event)

        # Claims for moved or finished workflows can never match again.
        live = self._state.list(status=WorkflowStatus.ACTIVE)
        pruned = self._claims.prune(f"{i.id}:{i.version}" for i in live)
        logger.info(
            "Deadline sweep finished",
            extra={
                "scanned": len(active),
                "notified": len(notified),
                "pruned_claims": pruned,
                "project_id": project_id,
            },
        )
        return SweepResult(scanned=len(active), notified=notified)
