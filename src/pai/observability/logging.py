"""Structured logging for the pai engine.

One JSON object per line on stderr (or a given stream):

    {"timestamp": "...Z", "level": "INFO", "event": "action_started", "action": "A_TOPIC", "mode": "local"}

Fields whose value is None are omitted. The global logger is disabled until
``enable_structured_logging()`` is called (the CLI does so for --log-json).
"""

import json
import sys
from datetime import datetime, timezone
from typing import Any, TextIO


class StructuredLogger:
    """Emits action, pipeline and step events as JSON lines."""

    def __init__(self, enabled: bool = True, output: TextIO | None = None):
        self.enabled = enabled
        self.output = output or sys.stderr

    def emit(self, level: str, event: str, /, **fields: Any) -> None:
        """Write one event line.

        Args:
            level: INFO, WARNING or ERROR
            event: Event name
            **fields: Event payload; None values are dropped
        """
        if not self.enabled:
            return

        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "event": event,
        }
        entry.update((key, value) for key, value in fields.items() if value is not None)
        print(json.dumps(entry, default=str), file=self.output, flush=True)

    # Actions

    def log_action_start(self, action: str, mode: str, trace_id: str | None = None):
        self.emit("INFO", "action_started", action=action, mode=mode, trace_id=trace_id)

    def log_action_complete(self, action: str, version: str | None, mode: str, duration_ms: float):
        self.emit("INFO", "action_completed", action=action, version=version, mode=mode, duration_ms=duration_ms)

    def log_action_failure(self, action: str, error_type: str, error: str, duration_ms: float):
        self.emit(
            "ERROR", "action_failed", action=action, error_type=error_type, error=error, duration_ms=duration_ms
        )

    # Pipelines

    def log_pipeline_start(self, pipeline: str, form: str, steps: int):
        self.emit("INFO", "pipeline_started", pipeline=pipeline, form=form, steps=steps)

    def log_pipeline_complete(self, pipeline: str, duration_ms: float, status: str):
        self.emit("INFO", "pipeline_completed", pipeline=pipeline, duration_ms=duration_ms, status=status)

    def log_step_start(self, pipeline: str, step: str, action: str, index: int):
        self.emit("INFO", "step_started", pipeline=pipeline, step=step, action=action, index=index)

    def log_step_complete(self, pipeline: str, step: str, duration_ms: float):
        self.emit("INFO", "step_completed", pipeline=pipeline, step=step, duration_ms=duration_ms)

    def log_step_failure(self, pipeline: str, step: str, error: str):
        self.emit("ERROR", "step_failed", pipeline=pipeline, step=step, error=error)

    # Free-form

    def log_warning(self, message: str, **fields: Any):
        self.emit("WARNING", "warning", message=message, **fields)

    def log_error(self, message: str, **fields: Any):
        self.emit("ERROR", "error", message=message, **fields)


_logger = StructuredLogger(enabled=False)


def get_logger() -> StructuredLogger:
    """Return the process-wide structured logger."""
    return _logger


def enable_structured_logging(output: TextIO | None = None) -> StructuredLogger:
    """Turn on JSON event logging (stderr unless ``output`` is given)."""
    global _logger
    _logger = StructuredLogger(enabled=True, output=output)
    return _logger


def disable_structured_logging() -> None:
    global _logger
    _logger = StructuredLogger(enabled=False)
