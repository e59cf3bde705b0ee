from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from buildpro_workflows.engine.runtime import WorkflowRuntime
from buildpro_workflows.engine.workflow.errors import (
    AutomaticTransitionLoop,
    TemplateAlreadyExists,
    VersionConflict,
    WorkflowError,
    WorkflowNotFound,
)
from buildpro_workflows.engine.workflow.models import WorkflowTemplate
from buildpro_workflows.server.app import create_app
from buildpro_workflows.server.errors import status_for
from tests.conftest import PROJECT_ID, FrozenClock, review_graph

DESIGNER = {
    "X-User-Id": "dana",
    "X-User-Capabilities": (
        "create_workflow_template,edit_workflow_template,delete_workflow_template"
    ),
}
PM = {"X-User-Id": "sam", "X-User-Capabilities": "start_workflow,cancel_workflow"}
ALICE = {"X-User-Id": "alice", "X-User-Roles": "reviewer"}
BOB = {"X-User-Id": "bob", "X-User-Roles": "reviewer"}
CAROL = {"X-User-Id": "carol", "X-User-Roles": "approver"}


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, runtime: WorkflowRuntime) -> TestClient:
    monkeypatch.delenv("WORKFLOW_SWEEP_ENABLED", raising=False)
    return TestClient(create_app(runtime))


def _start(client: TestClient, entity_id: str = "S-1") -> dict:
    resp = client.post(
        "/api/v1/workflows/start",
        headers=PM,
        json={"entity_type": "submittal", "entity_id": entity_id, "project_id": PROJECT_ID},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health(client: TestClient) -> None:
    body = client.get("/api/v1/health").json()
    assert body["status"] == "ok"
    assert body["sweep_enabled"] is False
    assert "version" in body


def test_template_designer_endpoints(client: TestClient) -> None:
    payload = {
        **review_graph(),
        "name": "Submittal review",
        "entity_type": "submittal",
        "is_active": True,
        "is_default": True,
    }

    assert client.post("/api/v1/workflows/templates", json=payload).status_code == 401
    forbidden = client.post("/api/v1/workflows/templates", json=payload, headers=ALICE)
    assert forbidden.status_code == 403
    assert forbidden.json()["error"] == "missing_capability"

    created = client.post("/api/v1/workflows/templates", json=payload, headers=DESIGNER)
    assert created.status_code == 201, created.text
    template = created.json()
    assert template["created_by"] == "dana"
    assert set(template["stages"]) == {"start", "review", "approval", "approved", "rejected"}

    listed = client.get("/api/v1/workflows/templates", params={"entity_type": "submittal"}).json()
    assert [t["id"] for t in listed] == [template["id"]]

    report = client.post(f"/api/v1/workflows/templates/{template['id']}/validate").json()
    assert report == {"valid": True, "errors": []}

    copy = client.post(
        f"/api/v1/workflows/templates/{template['id']}/duplicate", headers=DESIGNER
    ).json()
    assert copy["name"] == "Submittal review (Copy)"
    assert copy["is_default"] is False

    promoted = client.put(
        f"/api/v1/workflows/templates/{copy['id']}/set-default", headers=DESIGNER
    ).json()
    assert promoted["is_default"] is True
    original = client.get(f"/api/v1/workflows/templates/{template['id']}").json()
    assert original["is_default"] is False

    renamed = client.put(
        f"/api/v1/workflows/templates/{template['id']}",
        headers=DESIGNER,
        json={"name": "Legacy review"},
    ).json()
    assert renamed["name"] == "Legacy review"

    deleted = client.delete(f"/api/v1/workflows/templates/{template['id']}", headers=DESIGNER)
    assert deleted.status_code == 204
    missing = client.get(f"/api/v1/workflows/templates/{template['id']}")
    assert missing.status_code == 404
    assert missing.json()["error"] == "template_not_found"


def test_invalid_graph_is_reported(client: TestClient) -> None:
    broken = review_graph()
    broken["stages"] = [s for s in broken["stages"] if s["stage_type"] != "end"]
    broken["transitions"] = [
        t for t in broken["transitions"] if t["to_stage_id"] not in {"approved", "rejected"}
    ]

    dry_run = client.post("/api/v1/workflows/templates/validate", json=broken).json()
    assert dry_run["valid"] is False
    assert "missing_end" in {e["kind"] for e in dry_run["errors"]}

    resp = client.post(
        "/api/v1/workflows/templates",
        headers=DESIGNER,
        json={**broken, "name": "Broken", "entity_type": "rfi", "is_active": True},
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "template_invalid"
    assert resp.json()["errors"]


def test_workflow_lifecycle_over_http(
    client: TestClient, submittal_template: WorkflowTemplate, clock: FrozenClock
) -> None:
    wf = _start(client)
    assert wf["assigned_to"] == "alice"
    assert wf["current_stage_name"] == "Review"
    assert wf["urgency"] == "on_track"
    assert wf["version"] == 1

    by_entity = client.get("/api/v1/workflows/entity/submittal/S-1").json()
    assert by_entity["id"] == wf["id"]
    assert client.get("/api/v1/workflows/entity/submittal/S-404").json() is None

    assert client.get(f"/api/v1/workflows/{wf['id']}/transitions", headers=BOB).json() == []
    offered = client.get(f"/api/v1/workflows/{wf['id']}/transitions", headers=ALICE).json()
    assert {t["transition_action"] for t in offered} == {"approve", "reject", "revise"}

    not_mine = client.post(
        f"/api/v1/workflows/{wf['id']}/transition",
        headers=BOB,
        json={"transition_id": "t-review-approve", "expected_version": 1},
    )
    assert not_mine.status_code == 403
    assert not_mine.json()["error"] == "not_assignee"

    clock.advance(hours=3)
    moved = client.post(
        f"/api/v1/workflows/{wf['id']}/transition",
        headers=ALICE,
        json={"transition_id": "t-review-approve", "expected_version": 1},
    )
    assert moved.status_code == 200, moved.text
    assert moved.json()["current_stage_id"] == "approval"
    assert moved.json()["version"] == 2

    stale = client.post(
        f"/api/v1/workflows/{wf['id']}/transition",
        headers=CAROL,
        json={"transition_id": "t-approval-approve", "expected_version": 1},
    )
    assert stale.status_code == 409
    assert stale.json()["error"] == "version_conflict"
    assert stale.json()["current_version"] == 2

    silent_reject = client.post(
        f"/api/v1/workflows/{wf['id']}/transition",
        headers=CAROL,
        json={"transition_id": "t-approval-reject", "expected_version": 2},
    )
    assert silent_reject.status_code == 422
    assert silent_reject.json()["error"] == "comments_required"

    tasks = client.get(
        "/api/v1/workflows/tasks/my-tasks", headers=CAROL, params={"project_id": PROJECT_ID}
    ).json()
    assert [t["workflow"]["id"] for t in tasks["tasks"]] == [wf["id"]]
    assert tasks["counts"]["on_track"] == 1

    # Omitting expected_version acts on the current version.
    done = client.post(
        f"/api/v1/workflows/{wf['id']}/transition",
        headers=CAROL,
        json={"transition_id": "t-approval-approve", "comments": "Approved as noted"},
    ).json()
    assert done["status"] == "completed"
    assert done["completed_within_sla"] is True

    history = client.get(f"/api/v1/workflows/{wf['id']}/history").json()
    assert [h["transition_action"] for h in history] == ["start", "approve", "approve"]
    assert history[-1]["comments"] == "Approved as noted"

    replay = client.get(f"/api/v1/workflows/{wf['id']}/replay").json()
    assert replay["consistent"] is True

    stats = client.get(f"/api/v1/workflows/stats/project/{PROJECT_ID}").json()
    assert stats["completed"] == 1
    assert stats["sla_compliance_rate"] == 100.0

    analytics = client.get(
        f"/api/v1/workflows/analytics/project/{PROJECT_ID}", params={"days": 30}
    ).json()
    assert analytics["avg_completion_days"] == {"submittal": pytest.approx(0.125, abs=0.01)}
    assert analytics["bottlenecks"][0]["stage_name"] == "Review"

    completed = client.get(
        f"/api/v1/workflows/project/{PROJECT_ID}", params={"status": "completed"}
    ).json()
    assert [w["id"] for w in completed] == [wf["id"]]

    inbox = client.get("/api/v1/notifications", headers=PM).json()
    assert inbox[0]["kind"] == "workflow_completed"


def test_cancel_and_duplicate_start(client: TestClient, submittal_template: WorkflowTemplate) -> None:
    wf = _start(client)

    dup = client.post(
        "/api/v1/workflows/start",
        headers=PM,
        json={"entity_type": "submittal", "entity_id": "S-1", "project_id": PROJECT_ID},
    )
    assert dup.status_code == 409
    assert dup.json()["existing_workflow_id"] == wf["id"]

    denied = client.post(f"/api/v1/workflows/{wf['id']}/cancel", headers=ALICE)
    assert denied.status_code == 403

    cancelled = client.post(
        f"/api/v1/workflows/{wf['id']}/cancel", headers=PM, json={"reason": "Withdrawn"}
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    again = client.post(
        f"/api/v1/workflows/{wf['id']}/transition",
        headers=ALICE,
        json={"transition_id": "t-review-approve"},
    )
    assert again.status_code == 422
    assert again.json()["error"] == "workflow_not_active"


def test_unknown_workflow_and_missing_default(client: TestClient) -> None:
    missing = client.get("/api/v1/workflows/nope")
    assert missing.status_code == 404
    assert missing.json()["error"] == "workflow_not_found"

    no_default = client.post(
        "/api/v1/workflows/start",
        headers=PM,
        json={"entity_type": "rfi", "entity_id": "RFI-1", "project_id": PROJECT_ID},
    )
    assert no_default.status_code == 422
    assert no_default.json()["error"] == "no_default_template"


def test_create_app_reads_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    state = tmp_path / "state"
    monkeypatch.setenv("WORKFLOW_STATE_PATH", str(state))
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.delenv("WORKFLOW_SWEEP_ENABLED", raising=False)

    client = TestClient(create_app())

    assert client.get("/api/v1/health").json()["status"] == "ok"
    assert client.get("/api/v1/workflows/templates").json() == []
    assert state.is_dir()


def test_sweep_runner_follows_app_lifespan(
    monkeypatch: pytest.MonkeyPatch, runtime: WorkflowRuntime
) -> None:
    monkeypatch.setenv("WORKFLOW_SWEEP_ENABLED", "true")
    monkeypatch.setenv("WORKFLOW_SWEEP_INTERVAL_SECONDS", "3600")
    app = create_app(runtime)

    with TestClient(app) as client:
        assert app.state.sweep_runner.running
        assert client.get("/api/v1/health").json()["sweep_enabled"] is True

    assert not app.state.sweep_runner.running


@pytest.mark.parametrize(
    ("error", "status"),
    [
        (AutomaticTransitionLoop("wf-1", 64), 422),
        (TemplateAlreadyExists("sub-std"), 409),
        (VersionConflict("wf-1", 1, 2), 409),
        (WorkflowNotFound("wf-1"), 404),
        (WorkflowError("unclassified"), 400),
    ],
)
def test_error_categories_map_to_http_status(error: WorkflowError, status: int) -> None:
    assert status_for(error) == status


def test_duplicate_template_id_is_a_conflict(client: TestClient) -> None:
    payload = {**review_graph(), "id": "sub-std", "name": "Submittal", "entity_type": "submittal"}
    created = client.post("/api/v1/workflows/templates", json=payload, headers=DESIGNER)
    assert created.status_code == 201

    again = client.post("/api/v1/workflows/templates", json=payload, headers=DESIGNER)
    assert again.status_code == 409
    assert again.json()["error"] == "template_exists"
