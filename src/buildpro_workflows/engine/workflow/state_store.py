"""Persisted workflow instances and their history.

Instances and history entries share one JSON document so that a transition (new instance
state + appended history entries) lands in a single atomic write. Either both are stored or
neither is.

Concurrency model:
  Each commit is a compare-and-swap on the instance ``version``. The internal lock only
  guards the read-modify-write of the file; it never waits on callers, so two reviewers
  racing on the same stage get one success and one :class:`VersionConflict`.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Sequence
from pathlib import Path

from pydantic import BaseModel, Field

from .errors import DuplicateActiveWorkflow, VersionConflict, WorkflowNotActive, WorkflowNotFound
from .models import EntityType, HistoryEntry, WorkflowInstance, WorkflowStatus
from .persistence import load_json, write_json_atomic

logger = logging.getLogger(__name__)


class WorkflowDocument(BaseModel):
    instances: list[WorkflowInstance] = Field(default_factory=list)
    history: list[HistoryEntry] = Field(default_factory=list)
    next_sequence: int = 1


def _history_order(entry: HistoryEntry) -> tuple[object, int]:
    return (entry.transitioned_at, entry.sequence)


class WorkflowStateStore:
    """JSON-file backed store for workflow instances and the history ledger."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load_unlocked(self) -> WorkflowDocument:
        raw = load_json(self._path, None)
        if not isinstance(raw, dict):
            return WorkflowDocument()
        return WorkflowDocument.model_validate(raw)

    def _save_unlocked(self, doc: WorkflowDocument) -> None:
        write_json_atomic(self._path, doc.model_dump(mode="json"))

    def _append_unlocked(self, doc: WorkflowDocument, entries: Sequence[HistoryEntry]) -> None:
        for entry in entries:
            doc.history.append(entry.model_copy(update={"sequence": doc.next_sequence}))
            doc.next_sequence += 1

    # Reads

    def get(self, workflow_id: str) -> WorkflowInstance | None:
        with self._lock:
            for instance in self._load_unlocked().instances:
                if instance.id == workflow_id:
                    return instance
            return None

    def list(
        self,
        *,
        project_id: str | None = None,
        status: WorkflowStatus | None = None,
        entity_type: EntityType | None = None,
        assigned_to: str | None = None,
    ) -> list[WorkflowInstance]:
        with self._lock:
            instances = self._load_unlocked().instances
        out: list[WorkflowInstance] = []
        for instance in instances:
            if project_id is not None and instance.project_id != project_id:
                continue
            if status is not None and instance.status != status:
                continue
            if entity_type is not None and instance.entity_type != entity_type:
                continue
            if assigned_to is not None and instance.assigned_to != assigned_to:
                continue
            out.append(instance)
        return out

    def find_for_entity(
        self, entity_type: EntityType, entity_id: str
    ) -> WorkflowInstance | None:
        """The active instance for an entity or, failing that, the most recently started one."""

        matches = [
            i for i in self.list(entity_type=entity_type) if i.entity_id == entity_id
        ]
        if not matches:
            return None
        active = [i for i in matches if i.is_active]
        if active:
            return active[0]
        return max(matches, key=lambda i: i.started_at)

    def has_active_for_template(self, template_id: str) -> bool:
        return any(
            i.template_id == template_id for i in self.list(status=WorkflowStatus.ACTIVE)
        )

    def active_assignment_counts(self, project_id: str) -> Counter[str]:
        counts: Counter[str] = Counter()
        for instance in self.list(project_id=project_id, status=WorkflowStatus.ACTIVE):
            if instance.assigned_to:
                counts[instance.assigned_to] += 1
        return counts

    def history(self, workflow_id: str) -> list[HistoryEntry]:
        with self._lock:
            entries = [e for e in self._load_unlocked().history if e.workflow_id == workflow_id]
        return sorted(entries, key=_history_order)

    def all_history(self) -> list[HistoryEntry]:
        with self._lock:
            entries = list(self._load_unlocked().history)
        return sorted(entries, key=_history_order)

    # Writes

    def create(
        self, instance: WorkflowInstance, entries: Sequence[HistoryEntry]
    ) -> WorkflowInstance:
        """Insert a new instance with its initial history, enforcing one active run per entity."""

        with self._lock:
            doc = self._load_unlocked()
            for existing in doc.instances:
                if (
                    existing.is_active
                    and existing.entity_type == instance.entity_type
                    and existing.entity_id == instance.entity_id
                ):
                    raise DuplicateActiveWorkflow(
                        instance.entity_type.value, instance.entity_id, existing.id
                    )
            doc.instances.append(instance)
            self._append_unlocked(doc, entries)
            self._save_unlocked(doc)
            return instance

    def commit(
        self,
        instance: WorkflowInstance,
        entries: Sequence[HistoryEntry],
        *,
        expected_version: int,
    ) -> WorkflowInstance:
        """Replace an instance and append history iff the stored version still matches."""

        with self._lock:
            doc = self._load_unlocked()
            for idx, stored in enumerate(doc.instances):
                if stored.id != instance.id:
                    continue
                if stored.version != expected_version:
                    raise VersionConflict(instance.id, expected_version, stored.version)
                if not stored.is_active:
                    raise WorkflowNotActive(stored.id, stored.status.value)
                doc.instances[idx] = instance
                self._append_unlocked(doc, entries)
                self._save_unlocked(doc)
                return instance
            raise WorkflowNotFound(instance.id)

    def append_history(self, entry: HistoryEntry) -> HistoryEntry:
        """Append a standalone entry (e.g. an annotation) to an active workflow."""

        with self._lock:
            doc = self._load_unlocked()
            owner = next((i for i in doc.instances if i.id == entry.workflow_id), None)
            if owner is None:
                raise WorkflowNotFound(entry.workflow_id)
            if not owner.is_active:
                raise WorkflowNotActive(owner.id, owner.status.value)
            self._append_unlocked(doc, [entry])
            self._save_unlocked(doc)
            return doc.history[-1]
