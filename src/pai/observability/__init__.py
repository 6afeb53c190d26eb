"""Observability utilities for the pai engine."""

from pai.observability.logging import (
    StructuredLogger,
    get_logger,
    enable_structured_logging,
    disable_structured_logging,
)

__all__ = [
    "StructuredLogger",
    "get_logger",
    "enable_structured_logging",
    "disable_structured_logging",
]
