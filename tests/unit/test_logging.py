from __future__ import annotations

import json
import logging
import sys

from buildpro_workflows.engine.logging import JsonFormatter


def _record(msg: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="buildpro_workflows.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_promotes_correlation_ids() -> None:
    line = JsonFormatter().format(
        _record("Workflow started", workflow_id="wf-1", project_id="tower-a", version=1)
    )
    payload = json.loads(line)

    assert payload["message"] == "Workflow started"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "buildpro_workflows.test"
    assert payload["workflow_id"] == "wf-1"
    assert payload["project_id"] == "tower-a"
    assert payload["extra"] == {"version": 1}


def test_json_formatter_omits_extra_when_only_ids_are_given() -> None:
    payload = json.loads(JsonFormatter().format(_record("Template deleted", template_id="t-1")))

    assert payload["template_id"] == "t-1"
    assert "extra" not in payload

    unset = json.loads(JsonFormatter().format(_record("Sweep", project_id=None)))
    assert "project_id" not in unset
    assert unset["extra"] == {"project_id": None}


def test_json_formatter_serializes_unknown_types_as_text() -> None:
    line = JsonFormatter().format(_record("Sweep", recipients={"alice"}))
    assert json.loads(line)["extra"]["recipients"] == "{'alice'}"


def test_json_formatter_includes_exception() -> None:
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = _record("Command failed")
        record.exc_info = sys.exc_info()

    payload = json.loads(JsonFormatter().format(record))
    assert "RuntimeError: boom" in payload["exception"]
