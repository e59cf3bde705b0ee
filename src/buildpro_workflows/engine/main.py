"""CLI entrypoint for the approval-workflow engine.

Operational commands only: template validation, the deadline sweep and a project report.
Workflow actions themselves go through the REST server.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from buildpro_workflows import __version__
from buildpro_workflows.engine.config import EngineSettings
from buildpro_workflows.engine.logging import configure_logging
from buildpro_workflows.engine.runtime import build_runtime
from buildpro_workflows.engine.workflow.analytics import Window
from buildpro_workflows.engine.workflow.models import TemplateGraph
from buildpro_workflows.engine.workflow.validation import validate_template

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="buildpro-workflows",
        description="Approval-workflow engine for construction project documents",
    )
    parser.add_argument(
        "--version", action="version", version=f"buildpro-workflows {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser(
        "validate-template",
        help="Check a template graph (JSON with 'stages' and 'transitions') without saving it",
    )
    validate.add_argument("--file", required=True, help="Path to the template JSON file")

    sweep = subparsers.add_parser(
        "sweep-deadlines",
        help="Run one deadline sweep and emit due-soon/overdue notifications",
    )
    sweep.add_argument(
        "--project-id",
        default=None,
        help="Limit the sweep to one project (defaults to all projects)",
    )

    report = subparsers.add_parser(
        "report",
        help="Print project stats, completion times and stage bottlenecks as JSON",
    )
    report.add_argument("--project-id", required=True, help="Project to report on")
    report.add_argument(
        "--days",
        type=int,
        default=30,
        help="Analytics window in days (0 means all time)",
    )

    return parser


def _validate_template_file(path: Path) -> int:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        graph = TemplateGraph.model_validate(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        print(f"Could not read template {path}: {e}", file=sys.stderr)
        return 3

    errors = validate_template(graph)
    if errors:
        print(json.dumps({"valid": False, "errors": [e.to_json() for e in errors]}, indent=2))
        return 3
    print(json.dumps({"valid": True, "errors": []}, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = EngineSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "validate-template":
            return _validate_template_file(Path(args.file))

        runtime = build_runtime(settings)

        if args.command == "sweep-deadlines":
            result = runtime.sweep.run(project_id=args.project_id)
            print(f"Scanned {result.scanned} active workflows; sent {len(result.notified)} notices")
            return 0

        if args.command == "report":
            now = runtime.clock()
            window = Window.last_days(args.days, now) if args.days > 0 else Window()
            analytics = runtime.analytics
            payload = {
                "stats": analytics.project_stats(args.project_id, window).model_dump(mode="json"),
                "avg_completion_days": {
                    k.value: v
                    for k, v in analytics.completion_times_by_entity_type(
                        window, project_id=args.project_id
                    ).items()
                },
                "bottlenecks": [
                    b.model_dump(mode="json")
                    for b in analytics.stage_bottlenecks(window, project_id=args.project_id)
                ],
            }
            print(json.dumps(payload, indent=2))
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
