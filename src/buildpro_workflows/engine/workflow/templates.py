"""Workflow template store.

Templates are edited freely until an active workflow is bound to them; from then on only
non-topology fields (name, description, activation) may change. Instances never see later
edits regardless, because they run against the snapshot captured at start.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from .errors import TemplateAlreadyExists, TemplateInactive, TemplateLocked, TemplateNotFound
from .models import EntityType, TemplateChanges, TemplateDraft, WorkflowTemplate
from .persistence import safe_load_json_list, save_json_list
from .validation import ensure_valid

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class TemplateStore:
    """JSON-file backed store for workflow templates.

    Args:
        path: Where templates are persisted.
        has_active_instances: Answers whether any active workflow is bound to a template id.
        clock: Time source for created/updated stamps.
    """

    def __init__(
        self,
        path: Path,
        *,
        has_active_instances: Callable[[str], bool],
        clock: Clock = _utc_now,
    ) -> None:
        self._path = path
        self._has_active_instances = has_active_instances
        self._clock = clock
        self._lock = threading.Lock()

    def _load_unlocked(self) -> list[WorkflowTemplate]:
        return [WorkflowTemplate.model_validate(item) for item in safe_load_json_list(self._path)]

    def _save_unlocked(self, templates: list[WorkflowTemplate]) -> None:
        save_json_list(self._path, templates)

    @staticmethod
    def _index(templates: list[WorkflowTemplate], template_id: str) -> int:
        for idx, t in enumerate(templates):
            if t.id == template_id:
                return idx
        raise TemplateNotFound(template_id)

    @staticmethod
    def _unset_other_defaults(templates: list[WorkflowTemplate], keep: WorkflowTemplate) -> None:
        for idx, t in enumerate(templates):
            if t.id != keep.id and t.entity_type == keep.entity_type and t.is_default:
                templates[idx] = t.model_copy(update={"is_default": False})

    def get(self, template_id: str) -> WorkflowTemplate:
        with self._lock:
            templates = self._load_unlocked()
            return templates[self._index(templates, template_id)]

    def list_by_entity_type(
        self, entity_type: EntityType | None = None, *, active_only: bool = False
    ) -> list[WorkflowTemplate]:
        with self._lock:
            templates = self._load_unlocked()
        out = [
            t
            for t in templates
            if (entity_type is None or t.entity_type == entity_type)
            and (not active_only or t.is_active)
        ]
        # Stable ordering for UI: defaults first, then by name.
        out.sort(key=lambda t: (not t.is_default, t.name.lower()))
        return out

    def default_for(self, entity_type: EntityType) -> WorkflowTemplate | None:
        for t in self.list_by_entity_type(entity_type, active_only=True):
            if t.is_default:
                return t
        return None

    def create(self, draft: TemplateDraft, *, created_by: str | None = None) -> WorkflowTemplate:
        if draft.is_active:
            ensure_valid(draft)
        if draft.is_default and not draft.is_active:
            raise TemplateInactive(draft.id or "<new>")

        now = self._clock()
        template = WorkflowTemplate.model_validate(
            {
                **draft.model_dump(mode="json", exclude={"id"}),
                "id": draft.id or uuid.uuid4().hex,
                "revision": 1,
                "created_by": created_by,
                "created_at": now,
                "updated_at": now,
            }
        )
        with self._lock:
            templates = self._load_unlocked()
            if any(t.id == template.id for t in templates):
                raise TemplateAlreadyExists(template.id)
            if template.is_default:
                self._unset_other_defaults(templates, template)
            templates.append(template)
            self._save_unlocked(templates)

        logger.info(
            "Workflow template created",
            extra={"template_id": template.id, "entity_type": template.entity_type.value},
        )
        return template

    def update(self, template_id: str, changes: TemplateChanges) -> WorkflowTemplate:
        with self._lock:
            templates = self._load_unlocked()
            idx = self._index(templates, template_id)
            current = templates[idx]

            updates: dict[str, object] = {"updated_at": self._clock()}
            if changes.name is not None:
                updates["name"] = changes.name.strip() or current.name
            if changes.description is not None:
                updates["description"] = changes.description
            if changes.is_active is not None:
                updates["is_active"] = changes.is_active
                if not changes.is_active:
                    updates["is_default"] = False

            graph = changes.graph
            if graph is not None and not graph.same_topology(current):
                if self._has_active_instances(template_id):
                    raise TemplateLocked(
                        template_id, "active workflows are bound to it; topology is frozen"
                    )
                updates["stages"] = graph.stages
                updates["transitions"] = graph.transitions
                updates["revision"] = current.revision + 1

            updated = WorkflowTemplate.model_validate(
                {**current.model_dump(), **updates}
            )
            if updated.is_active:
                ensure_valid(updated)

            templates[idx] = updated
            self._save_unlocked(templates)

        logger.info(
            "Workflow template updated",
            extra={"template_id": template_id, "revision": updated.revision},
        )
        return updated

    def set_default(self, template_id: str) -> WorkflowTemplate:
        """Make a template the default for its entity type, unsetting any previous default."""

        with self._lock:
            templates = self._load_unlocked()
            idx = self._index(templates, template_id)
            target = templates[idx]
            if not target.is_active:
                raise TemplateInactive(template_id)
            updated = target.model_copy(update={"is_default": True, "updated_at": self._clock()})
            templates[idx] = updated
            self._unset_other_defaults(templates, updated)
            self._save_unlocked(templates)

        logger.info(
            "Default workflow template set",
            extra={"template_id": template_id, "entity_type": updated.entity_type.value},
        )
        return updated

    def duplicate(
        self, template_id: str, *, name: str | None = None, created_by: str | None = None
    ) -> WorkflowTemplate:
        source = self.get(template_id)
        draft = TemplateDraft.model_validate(
            {
                **source.topology(),
                "name": name or f"{source.name} (Copy)",
                "entity_type": source.entity_type,
                "description": source.description,
                "is_active": source.is_active,
                "is_default": False,
            }
        )
        return self.create(draft, created_by=created_by)

    def delete(self, template_id: str) -> None:
        with self._lock:
            templates = self._load_unlocked()
            self._index(templates, template_id)
            if self._has_active_instances(template_id):
                raise TemplateLocked(template_id, "active workflows are bound to it")
            self._save_unlocked([t for t in templates if t.id != template_id])

        logger.info("Workflow template deleted", extra={"template_id": template_id})
