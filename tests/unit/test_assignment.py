from __future__ import annotations

from datetime import UTC, datetime

from buildpro_workflows.engine.workflow.assignment import AssignmentContext, AssignmentResolver
from buildpro_workflows.engine.workflow.directory import ProjectDirectoryStore, ProjectMember
from buildpro_workflows.engine.workflow.models import HistoryEntry, Stage

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=UTC)


class FakeDirectory:
    def __init__(self, members: dict[str, list[str]]) -> None:
        self.members = members

    def members_with_role(self, project_id: str, role: str) -> list[str]:
        return sorted(u for u, roles in self.members.items() if role in roles)

    def is_member(self, project_id: str, user_id: str) -> bool:
        return user_id in self.members


class BrokenDirectory:
    def members_with_role(self, project_id: str, role: str) -> list[str]:
        raise ConnectionError("directory unavailable")

    def is_member(self, project_id: str, user_id: str) -> bool:
        raise ConnectionError("directory unavailable")


def _stage(rule: dict[str, str] | None) -> Stage:
    return Stage.model_validate(
        {"id": "review", "stage_number": 1, "stage_type": "review", "assignment_rules": rule}
    )


def _entry(action: str, by: str) -> HistoryEntry:
    return HistoryEntry(
        workflow_id="wf",
        from_stage_id="a",
        to_stage_id="b",
        transition_action=action,
        transitioned_by=by,
        transitioned_at=T0,
    )


def _ctx(**kwargs) -> AssignmentContext:
    return AssignmentContext(workflow_id="wf", project_id="p1", **kwargs)


def test_role_rule_picks_least_loaded_member() -> None:
    resolver = AssignmentResolver(
        FakeDirectory({"alice": ["reviewer"], "bob": ["reviewer"], "carol": ["approver"]}),
        lambda _project: {"alice": 2, "bob": 0},
    )
    assignment = resolver.resolve(_stage({"type": "role", "role": "reviewer"}), _ctx())
    assert assignment.user_id == "bob"
    assert assignment.reason == "role:reviewer"


def test_role_rule_breaks_ties_by_user_id() -> None:
    resolver = AssignmentResolver(
        FakeDirectory({"bob": ["reviewer"], "alice": ["reviewer"]}),
        lambda _project: {"alice": 1, "bob": 1},
    )
    assignment = resolver.resolve(_stage({"type": "role", "role": "reviewer"}), _ctx())
    assert assignment.user_id == "alice"


def test_role_rule_does_not_count_the_instance_against_its_current_assignee() -> None:
    resolver = AssignmentResolver(
        FakeDirectory({"alice": ["reviewer"], "bob": ["reviewer"]}),
        lambda _project: {"alice": 1, "bob": 0},
    )
    assignment = resolver.resolve(
        _stage({"type": "role", "role": "reviewer"}), _ctx(current_assignee="alice")
    )
    assert assignment.user_id == "alice"


def test_role_rule_without_members_is_unassigned() -> None:
    resolver = AssignmentResolver(FakeDirectory({"alice": ["approver"]}), lambda _p: {})
    assignment = resolver.resolve(_stage({"type": "role", "role": "reviewer"}), _ctx())
    assert assignment.is_unassigned
    assert "reviewer" in assignment.reason


def test_user_rule_requires_current_membership() -> None:
    resolver = AssignmentResolver(FakeDirectory({"alice": []}), lambda _p: {})

    assert resolver.resolve(_stage({"type": "user", "user_id": "alice"}), _ctx()).user_id == "alice"
    gone = resolver.resolve(_stage({"type": "user", "user_id": "mallory"}), _ctx())
    assert gone.is_unassigned


def test_previous_rule_skips_system_entries_and_stops_at_start() -> None:
    resolver = AssignmentResolver(FakeDirectory({}), lambda _p: {})
    stage = _stage({"type": "previous"})

    history = [_entry("start", "sam"), _entry("approve", "alice"), _entry("forward", "system")]
    assert resolver.resolve(stage, _ctx(history=history)).user_id == "alice"

    only_start = [_entry("start", "sam")]
    assert resolver.resolve(stage, _ctx(history=only_start)).is_unassigned


def test_missing_rule_and_directory_failures_degrade_to_unassigned() -> None:
    resolver = AssignmentResolver(BrokenDirectory(), lambda _p: {})

    assert resolver.resolve(_stage(None), _ctx()).is_unassigned
    failed = resolver.resolve(_stage({"type": "role", "role": "reviewer"}), _ctx())
    assert failed.is_unassigned
    assert failed.reason == "assignment lookup failed"


def test_directory_store_matches_roles_case_insensitively(tmp_path) -> None:
    store = ProjectDirectoryStore(tmp_path / "members.json")
    store.upsert(ProjectMember(project_id="tower-a", user_id="bob", roles=["Reviewer"]))
    store.upsert(ProjectMember(project_id="tower-a", user_id="alice", roles=[" reviewer "]))
    store.upsert(ProjectMember(project_id="tower-b", user_id="zoe", roles=["reviewer"]))

    assert store.members_with_role("tower-a", "REVIEWER") == ["alice", "bob"]

    store.remove("tower-a", "bob")
    assert not store.is_member("tower-a", "bob")
    assert [m.user_id for m in store.list("tower-a")] == ["alice"]
