"""Workflow domain models.

Templates are stored as an arena: stages and transitions live in flat maps keyed by id and
reference each other only by id. Instances embed an immutable snapshot of the template
graph they were started against.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SYSTEM_ACTOR = "system"
START_ACTION = "start"
CANCEL_ACTION = "cancel"


class EntityType(str, Enum):
    SUBMITTAL = "submittal"
    RFI = "rfi"
    CHANGE_ORDER = "change_order"


class StageType(str, Enum):
    START = "start"
    END = "end"
    APPROVAL = "approval"
    REVIEW = "review"
    NOTIFY = "notify"
    DECISION = "decision"


class TransitionAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REVISE = "revise"
    FORWARD = "forward"
    RETURN = "return"


# Actions that may not be taken without an explanation.
COMMENT_REQUIRED_ACTIONS: frozenset[TransitionAction] = frozenset(
    {TransitionAction.REJECT, TransitionAction.REVISE}
)


class WorkflowStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class RoleAssignment(BaseModel):
    type: Literal["role"] = "role"
    role: str = Field(min_length=1)


class UserAssignment(BaseModel):
    type: Literal["user"] = "user"
    user_id: str = Field(min_length=1)


class PreviousActorAssignment(BaseModel):
    type: Literal["previous"] = "previous"


AssignmentRule = Annotated[
    RoleAssignment | UserAssignment | PreviousActorAssignment,
    Field(discriminator="type"),
]


def _default_actions() -> list[TransitionAction]:
    return [TransitionAction.APPROVE, TransitionAction.REJECT]


class Stage(BaseModel):
    id: str = Field(min_length=1)
    stage_number: int | None = None
    stage_name: str = ""
    stage_type: StageType
    sla_hours: int = Field(default=0, ge=0)
    assignment_rules: AssignmentRule | None = None
    allowed_actions: list[TransitionAction] = Field(default_factory=_default_actions)
    description: str | None = None

    @property
    def is_start(self) -> bool:
        return self.stage_type == StageType.START

    @property
    def is_end(self) -> bool:
        return self.stage_type == StageType.END

    @property
    def display_name(self) -> str:
        return self.stage_name or self.stage_type.value


class Transition(BaseModel):
    id: str = Field(min_length=1)
    from_stage_id: str
    to_stage_id: str
    transition_action: TransitionAction
    transition_name: str = ""
    is_automatic: bool = False


def _keyed_by_id(value: object, *, generate_ids: bool) -> object:
    """Accept either a list of items or an id-keyed mapping and return the mapping.

    List order is preserved; it is the insertion order the engine relies on when several
    transitions leave the same stage.
    """

    if isinstance(value, dict):
        keyed: dict[str, object] = {}
        for key, item in value.items():
            if isinstance(item, dict) and not item.get("id"):
                item = {**item, "id": key}
            keyed[str(key)] = item
        return keyed
    if isinstance(value, list | tuple):
        keyed = {}
        for item in value:
            if isinstance(item, BaseModel):
                item_id = str(getattr(item, "id", ""))
            elif isinstance(item, dict):
                item_id = str(item.get("id") or "")
                if not item_id and generate_ids:
                    item_id = uuid.uuid4().hex
                    item = {**item, "id": item_id}
            else:
                return value
            if item_id in keyed:
                raise ValueError(f"duplicate id {item_id!r}")
            keyed[item_id] = item
        return keyed
    return value


class TemplateGraph(BaseModel):
    """Stage/transition arena shared by templates and their snapshots."""

    stages: dict[str, Stage] = Field(default_factory=dict)
    transitions: dict[str, Transition] = Field(default_factory=dict)

    @field_validator("stages", mode="before")
    @classmethod
    def _stages_by_id(cls, value: object) -> object:
        return _keyed_by_id(value, generate_ids=False)

    @field_validator("transitions", mode="before")
    @classmethod
    def _transitions_by_id(cls, value: object) -> object:
        return _keyed_by_id(value, generate_ids=True)

    @model_validator(mode="after")
    def _keys_match_ids(self) -> TemplateGraph:
        for key, stage in self.stages.items():
            if key != stage.id:
                raise ValueError(f"stage key {key!r} does not match stage id {stage.id!r}")
        for key, t in self.transitions.items():
            if key != t.id:
                raise ValueError(f"transition key {key!r} does not match transition id {t.id!r}")
        return self

    def stage(self, stage_id: str) -> Stage | None:
        return self.stages.get(stage_id)

    def start_stages(self) -> list[Stage]:
        return [s for s in self.stages.values() if s.is_start]

    def end_stages(self) -> list[Stage]:
        return [s for s in self.stages.values() if s.is_end]

    def outgoing(self, stage_id: str) -> list[Transition]:
        """Transitions leaving ``stage_id``, in insertion order."""

        return [t for t in self.transitions.values() if t.from_stage_id == stage_id]

    def same_topology(self, other: TemplateGraph) -> bool:
        """Equal stages and transitions, including their insertion order."""

        return (
            list(self.stages) == list(other.stages)
            and list(self.transitions) == list(other.transitions)
            and self.topology() == other.topology()
        )

    def topology(self) -> dict[str, object]:
        return {
            "stages": {k: v.model_dump(mode="json") for k, v in self.stages.items()},
            "transitions": {k: v.model_dump(mode="json") for k, v in self.transitions.items()},
        }


class TemplateSnapshot(TemplateGraph):
    """Immutable copy of a template's graph bound to an instance at start time."""

    model_config = ConfigDict(frozen=True)

    template_id: str
    revision: int
    name: str


class WorkflowTemplate(TemplateGraph):
    id: str
    name: str = Field(min_length=1)
    entity_type: EntityType
    description: str = ""
    is_active: bool = False
    is_default: bool = False
    revision: int = 1

    created_by: str | None = None
    created_at: datetime
    updated_at: datetime

    def snapshot(self) -> TemplateSnapshot:
        # Dump + validate produces a deep copy; later template edits cannot leak in.
        return TemplateSnapshot.model_validate(
            {
                "template_id": self.id,
                "revision": self.revision,
                "name": self.name,
                **self.topology(),
            }
        )


class TemplateDraft(TemplateGraph):
    """Designer input for a new template."""

    id: str | None = None
    name: str = Field(min_length=1)
    entity_type: EntityType
    description: str = ""
    is_active: bool = False
    is_default: bool = False


class TemplateChanges(BaseModel):
    """Partial template update. Fields left as ``None`` are not touched."""

    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    is_active: bool | None = None
    graph: TemplateGraph | None = None

    @model_validator(mode="before")
    @classmethod
    def _collect_graph(cls, data: Any) -> Any:
        # Callers send `stages`/`transitions` side by side; fold them into one graph.
        if not isinstance(data, dict):
            return data
        data = dict(data)
        stages = data.pop("stages", None)
        transitions = data.pop("transitions", None)
        if stages is not None or transitions is not None:
            if stages is None or transitions is None:
                raise ValueError("stages and transitions must be updated together")
            data["graph"] = {"stages": stages, "transitions": transitions}
        return data


class WorkflowInstance(BaseModel):
    id: str
    template_id: str
    template: TemplateSnapshot
    entity_type: EntityType
    entity_id: str
    project_id: str
    status: WorkflowStatus = WorkflowStatus.ACTIVE

    current_stage_id: str
    current_stage_entered_at: datetime
    current_stage_due_date: datetime | None = None
    assigned_to: str | None = None
    needs_assignment: bool = False

    started_by: str
    started_at: datetime
    completed_at: datetime | None = None
    completed_within_sla: bool | None = None
    version: int = 1

    @property
    def is_active(self) -> bool:
        return self.status == WorkflowStatus.ACTIVE

    @property
    def current_stage(self) -> Stage:
        stage = self.template.stage(self.current_stage_id)
        if stage is None:
            raise KeyError(self.current_stage_id)
        return stage


class HistoryEntry(BaseModel):
    """One audited step. Entries are never mutated once appended."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    workflow_id: str
    sequence: int = 0
    from_stage_id: str | None
    to_stage_id: str
    transition_action: str
    transitioned_by: str
    transitioned_at: datetime
    comments: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_system(self) -> bool:
        return self.transitioned_by == SYSTEM_ACTOR
