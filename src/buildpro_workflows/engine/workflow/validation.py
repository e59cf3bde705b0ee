"""Structural validation of a template's stage/transition graph.

A template may only be activated when :func:`validate_template` returns no errors. Cycles
are allowed (a "revise" edge looping back to an earlier review is normal) as long as every
stage can still reach an ``end`` stage.
"""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from .errors import TemplateValidationFailed
from .models import TemplateGraph


class ValidationErrorKind(str, Enum):
    MISSING_START = "missing_start"
    MULTIPLE_START = "multiple_start"
    MISSING_END = "missing_end"
    NO_OUTGOING_TRANSITION = "no_outgoing_transition"
    UNREACHABLE_STAGE = "unreachable_stage"
    NO_PATH_TO_END = "no_path_to_end"
    FOREIGN_STAGE_REFERENCE = "foreign_stage_reference"
    STAGE_NUMBER_NOT_DENSE = "stage_number_not_dense"
    DUPLICATE_STAGE_NUMBER = "duplicate_stage_number"
    DUPLICATE_ACTION_ROUTE = "duplicate_action_route"


@dataclass(frozen=True, slots=True)
class GraphValidationError:
    kind: ValidationErrorKind
    message: str
    stage_id: str | None = None
    transition_id: str | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"kind": self.kind.value, "message": self.message}
        if self.stage_id is not None:
            out["stage_id"] = self.stage_id
        if self.transition_id is not None:
            out["transition_id"] = self.transition_id
        return out


def _reachable(roots: Iterable[str], edges: dict[str, list[str]]) -> set[str]:
    seen: set[str] = set()
    queue = deque(roots)
    while queue:
        node = queue.popleft()
        if node in seen:
            continue
        seen.add(node)
        queue.extend(n for n in edges.get(node, []) if n not in seen)
    return seen


def validate_template(graph: TemplateGraph) -> list[GraphValidationError]:
    """Return every structural problem in ``graph``; an empty list means it is valid."""

    errors: list[GraphValidationError] = []
    stages = graph.stages

    starts = graph.start_stages()
    ends = graph.end_stages()
    if not starts:
        errors.append(
            GraphValidationError(ValidationErrorKind.MISSING_START, "Template has no start stage")
        )
    elif len(starts) > 1:
        for extra in starts[1:]:
            errors.append(
                GraphValidationError(
                    ValidationErrorKind.MULTIPLE_START,
                    f"Template has more than one start stage ({extra.id})",
                    stage_id=extra.id,
                )
            )
    if not ends:
        errors.append(
            GraphValidationError(ValidationErrorKind.MISSING_END, "Template has no end stage")
        )

    forward: dict[str, list[str]] = defaultdict(list)
    backward: dict[str, list[str]] = defaultdict(list)
    routes: set[tuple[str, str]] = set()
    for t in graph.transitions.values():
        foreign = [sid for sid in (t.from_stage_id, t.to_stage_id) if sid not in stages]
        if foreign:
            errors.append(
                GraphValidationError(
                    ValidationErrorKind.FOREIGN_STAGE_REFERENCE,
                    f"Transition {t.id} references unknown stage(s): {', '.join(foreign)}",
                    transition_id=t.id,
                )
            )
            continue

        route = (t.from_stage_id, t.transition_action.value)
        if route in routes:
            errors.append(
                GraphValidationError(
                    ValidationErrorKind.DUPLICATE_ACTION_ROUTE,
                    f"Stage {t.from_stage_id} has more than one '{t.transition_action.value}' "
                    "transition",
                    stage_id=t.from_stage_id,
                    transition_id=t.id,
                )
            )
        routes.add(route)

        forward[t.from_stage_id].append(t.to_stage_id)
        backward[t.to_stage_id].append(t.from_stage_id)

    for stage in stages.values():
        if not stage.is_end and not forward.get(stage.id):
            errors.append(
                GraphValidationError(
                    ValidationErrorKind.NO_OUTGOING_TRANSITION,
                    f"Stage {stage.display_name!r} has no outgoing transition",
                    stage_id=stage.id,
                )
            )

    if starts:
        reachable = _reachable((s.id for s in starts), forward)
        for stage in stages.values():
            if not stage.is_start and stage.id not in reachable:
                errors.append(
                    GraphValidationError(
                        ValidationErrorKind.UNREACHABLE_STAGE,
                        f"Stage {stage.display_name!r} cannot be reached from start",
                        stage_id=stage.id,
                    )
                )

    if ends:
        can_finish = _reachable((s.id for s in ends), backward)
        for stage in stages.values():
            if not stage.is_end and stage.id not in can_finish:
                errors.append(
                    GraphValidationError(
                        ValidationErrorKind.NO_PATH_TO_END,
                        f"Stage {stage.display_name!r} has no path to an end stage",
                        stage_id=stage.id,
                    )
                )

    errors.extend(_stage_number_errors(graph))
    return errors


def _stage_number_errors(graph: TemplateGraph) -> list[GraphValidationError]:
    errors: list[GraphValidationError] = []
    numbered = [s for s in graph.stages.values() if not s.is_start and not s.is_end]
    seen: dict[int, str] = {}
    missing = False
    for stage in numbered:
        if stage.stage_number is None:
            missing = True
            errors.append(
                GraphValidationError(
                    ValidationErrorKind.STAGE_NUMBER_NOT_DENSE,
                    f"Stage {stage.display_name!r} has no stage_number",
                    stage_id=stage.id,
                )
            )
            continue
        if stage.stage_number in seen:
            errors.append(
                GraphValidationError(
                    ValidationErrorKind.DUPLICATE_STAGE_NUMBER,
                    f"stage_number {stage.stage_number} is used by both "
                    f"{seen[stage.stage_number]} and {stage.id}",
                    stage_id=stage.id,
                )
            )
            continue
        seen[stage.stage_number] = stage.id

    if not missing and sorted(seen) != list(range(1, len(seen) + 1)):
        errors.append(
            GraphValidationError(
                ValidationErrorKind.STAGE_NUMBER_NOT_DENSE,
                f"stage_number values {sorted(seen)} are not 1..{len(seen)}",
            )
        )
    return errors


def ensure_valid(graph: TemplateGraph) -> None:
    """Raise :class:`TemplateValidationFailed` unless ``graph`` is valid."""

    errors = validate_template(graph)
    if errors:
        raise TemplateValidationFailed(errors)
