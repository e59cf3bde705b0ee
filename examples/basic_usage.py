#!/usr/bin/env python3
"""Programmatic workflow example.

This demonstrates using the engine components directly:

* load settings from `.env`
* register a template from a JSON file and make it the default
* start a workflow for a submittal and print who it was routed to

State is persisted under `WORKFLOW_STATE_PATH` (default: `workflow_state/`).
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Sequence

from buildpro_workflows.engine.config import EngineSettings
from buildpro_workflows.engine.logging import configure_logging
from buildpro_workflows.engine.runtime import build_runtime
from buildpro_workflows.engine.workflow.authz import Actor, Capability
from buildpro_workflows.engine.workflow.directory import ProjectMember
from buildpro_workflows.engine.workflow.errors import DuplicateActiveWorkflow
from buildpro_workflows.engine.workflow.models import EntityType, TemplateDraft


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Start a submittal review (programmatic example).")
    parser.add_argument("--template", required=True, help="Template JSON with stages/transitions")
    parser.add_argument("--project-id", required=True, help="Project the submittal belongs to")
    parser.add_argument("--submittal", required=True, help="Submittal id, e.g. S-101")
    parser.add_argument(
        "--reviewers",
        default="",
        help='Comma-separated user ids given the "reviewer" role (optional)',
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = EngineSettings()
    configure_logging(settings.log_level)
    runtime = build_runtime(settings)

    for user_id in (u.strip() for u in args.reviewers.split(",") if u.strip()):
        runtime.directory.upsert(
            ProjectMember(project_id=args.project_id, user_id=user_id, roles=["reviewer"])
        )

    raw = json.loads(Path(args.template).read_text(encoding="utf-8"))
    draft = TemplateDraft.model_validate(
        {
            "name": "Submittal review",
            **raw,
            "entity_type": EntityType.SUBMITTAL,
            "is_active": True,
            "is_default": True,
        }
    )
    template = runtime.templates.create(draft, created_by="example")

    actor = Actor.of("example", capabilities=[Capability.START_WORKFLOW])
    try:
        instance = runtime.engine.start_workflow(
            entity_type=EntityType.SUBMITTAL,
            entity_id=args.submittal,
            project_id=args.project_id,
            actor=actor,
            template_id=template.id,
        )
    except DuplicateActiveWorkflow as exc:
        print(str(exc))
        return 0

    print(f"Started workflow {instance.id} at stage {instance.current_stage.display_name}")
    print(f"Assigned to: {instance.assigned_to or '(unassigned)'}")
    print(f"Persisted to: {settings.workflows_file}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
