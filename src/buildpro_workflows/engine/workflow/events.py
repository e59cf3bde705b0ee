"""Notification events emitted as side effects of workflow activity.

Events are emitted only after the state change they describe has been committed. Delivery
(e-mail, push, in-app badges) belongs to whoever consumes the sink.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field

from .persistence import safe_load_json_list, save_json_list

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    TASK_ASSIGNED = "task_assigned"
    ASSIGNMENT_FAILED = "assignment_failed"
    STAGE_NOTICE = "stage_notice"
    DEADLINE_DUE_SOON = "deadline_due_soon"
    DEADLINE_OVERDUE = "deadline_overdue"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_REJECTED = "workflow_rejected"
    WORKFLOW_CANCELLED = "workflow_cancelled"


class NotificationEvent(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    kind: NotificationKind
    workflow_id: str
    project_id: str
    recipients: list[str] = Field(default_factory=list)
    message: str
    created_at: datetime
    details: dict[str, Any] = Field(default_factory=dict)


class NotificationSink(Protocol):
    def emit(self, event: NotificationEvent) -> None: ...


class LoggingNotificationSink:
    """Writes every event to the log. Useful on its own in development."""

    def emit(self, event: NotificationEvent) -> None:
        level = (
            logging.WARNING
            if event.kind in {NotificationKind.ASSIGNMENT_FAILED, NotificationKind.DEADLINE_OVERDUE}
            else logging.INFO
        )
        logger.log(
            level,
            event.message,
            extra={
                "notification_kind": event.kind.value,
                "workflow_id": event.workflow_id,
                "project_id": event.project_id,
                "recipients": event.recipients,
            },
        )


class FanoutSink:
    def __init__(self, sinks: Sequence[NotificationSink]) -> None:
        self._sinks = list(sinks)

    def emit(self, event: NotificationEvent) -> None:
        for sink in self._sinks:
            sink.emit(event)


class NotificationStore:
    """Append-only JSON inbox of emitted notifications."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    def _load_unlocked(self) -> list[NotificationEvent]:
        return [NotificationEvent.model_validate(i) for i in safe_load_json_list(self._path)]

    def emit(self, event: NotificationEvent) -> None:
        with self._lock:
            events = self._load_unlocked()
            events.append(event)
            save_json_list(self._path, events)

    def list(
        self,
        *,
        recipient: str | None = None,
        workflow_id: str | None = None,
        kind: NotificationKind | None = None,
    ) -> list[NotificationEvent]:
        with self._lock:
            events = self._load_unlocked()
        out = [
            e
            for e in events
            if (recipient is None or recipient in e.recipients)
            and (workflow_id is None or e.workflow_id == workflow_id)
            and (kind is None or e.kind == kind)
        ]
        out.sort(key=lambda e: e.created_at, reverse=True)
        return out
