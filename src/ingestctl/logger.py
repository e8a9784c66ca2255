"""
Structured logging for provisioning events.

Diagnostic logging uses module loggers (``logging.getLogger(__name__)``)
configured once by ``configure_logging``. Workflow progress is additionally
emitted as one JSON object per event on the ``ingestctl.events`` logger so a
run can be reconstructed from its log alone.

Logged events:
- step.started
- step.completed
- step.skipped
- step.failed
- workflow.completed
- workflow.interrupted
- teardown.started
- teardown.completed

Usage:
    from ingestctl.logger import StepLogger

    events = StepLogger(domain="acme.com")
    events.step_started("gcp_project")
    events.step_completed("gcp_project", outputs=["PROJECT_ID", "REGION"])
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

_event_logger = logging.getLogger("ingestctl.events")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class JsonFormatter(logging.Formatter):
    """Render records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        # Event records are already JSON
        if record.name == _event_logger.name:
            return message
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": message,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(level: str = "info", fmt: str = "text") -> None:
    """Install a single stderr handler on the ``ingestctl`` logger."""
    root = logging.getLogger("ingestctl")
    root.setLevel(_LEVELS.get(level, logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.propagate = False


class StepLogger:
    """
    Structured logger for workflow events.

    Each entry carries the deployment domain so a shared log stream can be
    filtered per customer.
    """

    def __init__(self, domain: str, service_name: str = "ingestctl"):
        self.domain = domain
        self.service_name = service_name
        self._logger = _event_logger

    def _emit(self, event: str, level: str = "info", **extra_fields: Any) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "service": self.service_name,
            "domain": self.domain,
        }
        entry.update({k: v for k, v in extra_fields.items() if v is not None})
        self._logger.log(_LEVELS.get(level, logging.INFO), json.dumps(entry, default=str))

    def step_started(self, step: str) -> None:
        self._emit("step.started", step=step)

    def step_completed(self, step: str, outputs: Optional[Iterable[str]] = None) -> None:
        self._emit("step.completed", step=step, outputs=sorted(outputs) if outputs else None)

    def step_skipped(self, step: str) -> None:
        self._emit("step.skipped", step=step)

    def step_failed(self, step: str, error: str) -> None:
        self._emit("step.failed", level="error", step=step, error=error)

    def workflow_completed(self, project_id: Optional[str] = None) -> None:
        self._emit("workflow.completed", project_id=project_id)

    def workflow_interrupted(self, step: Optional[str]) -> None:
        self._emit("workflow.interrupted", level="warning", step=step)

    def teardown_started(self, project_id: Optional[str], mode: str) -> None:
        self._emit("teardown.started", project_id=project_id, mode=mode)

    def teardown_completed(self, project_id: Optional[str], deleted: Iterable[str]) -> None:
        self._emit("teardown.completed", project_id=project_id, deleted=sorted(deleted))
