"""Append-only audit trail of workflow transitions.

The ledger is a read/append view over :class:`WorkflowStateStore`. Transitions are written
by the engine together with the instance state; :meth:`HistoryLedger.append` exists for
out-of-band entries and refuses to write once a workflow is terminal.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime

from .models import (
    CANCEL_ACTION,
    START_ACTION,
    HistoryEntry,
    TemplateGraph,
    TransitionAction,
    WorkflowStatus,
)
from .state_store import WorkflowStateStore


class HistoryLedger:
    def __init__(self, store: WorkflowStateStore) -> None:
        self._store = store

    def append(self, entry: HistoryEntry) -> HistoryEntry:
        return self._store.append_history(entry)

    def list_for_workflow(self, workflow_id: str) -> list[HistoryEntry]:
        """Entries ordered by ``transitioned_at``, then insertion sequence."""

        return self._store.history(workflow_id)

    def list_between(
        self, *, start: datetime | None = None, end: datetime | None = None
    ) -> list[HistoryEntry]:
        return [
            e
            for e in self._store.all_history()
            if (start is None or e.transitioned_at >= start)
            and (end is None or e.transitioned_at <= end)
        ]

    def grouped_by_workflow(
        self, entries: Iterable[HistoryEntry] | None = None
    ) -> dict[str, list[HistoryEntry]]:
        grouped: dict[str, list[HistoryEntry]] = defaultdict(list)
        for entry in self._store.all_history() if entries is None else entries:
            grouped[entry.workflow_id].append(entry)
        return dict(grouped)


def terminal_status(action: str) -> WorkflowStatus:
    """Status an instance ends in when ``action`` moves it onto an end stage."""

    if action == TransitionAction.REJECT.value:
        return WorkflowStatus.REJECTED
    return WorkflowStatus.COMPLETED


def _arrival_action(graph: TemplateGraph, entry: HistoryEntry) -> str:
    # The synthetic start entry arrives through the template's entry transition.
    if entry.transition_action != START_ACTION:
        return entry.transition_action
    transition = graph.transitions.get(str(entry.metadata.get("transition_id", "")))
    if transition is None:
        return TransitionAction.FORWARD.value
    return transition.transition_action.value


@dataclass(frozen=True, slots=True)
class ReplayedState:
    current_stage_id: str | None
    status: WorkflowStatus
    version: int


def replay(graph: TemplateGraph, entries: Sequence[HistoryEntry]) -> ReplayedState:
    """Rebuild an instance's position from its history alone.

    Used to audit that stored instance state matches what the ledger says happened.
    """

    current: str | None = None
    status = WorkflowStatus.ACTIVE
    version = 0
    for entry in entries:
        version += 1
        action = entry.transition_action
        if action == CANCEL_ACTION:
            status = WorkflowStatus.CANCELLED
            continue
        current = entry.to_stage_id
        stage = graph.stage(entry.to_stage_id)
        if stage is not None and stage.is_end:
            status = terminal_status(_arrival_action(graph, entry))
    return ReplayedState(current_stage_id=current, status=status, version=version)


def stage_dwell_hours(entries: Sequence[HistoryEntry]) -> list[tuple[str, float]]:
    """Pair consecutive entries and attribute each gap to the stage being left.

    Returns ``(stage_id, hours)`` for every completed visit, in order.
    """

    out: list[tuple[str, float]] = []
    for prev, nxt in zip(entries, entries[1:], strict=False):
        stage_id = nxt.from_stage_id or prev.to_stage_id
        delta = (nxt.transitioned_at - prev.transitioned_at).total_seconds() / 3600.0
        out.append((stage_id, delta))
    return out
