"""Testing utilities for pai actions and pipelines."""

from pai.testing.fixtures import (
    RecordingTransport,
    write_action,
    write_legacy_action,
    write_pipeline,
)

__all__ = [
    "RecordingTransport",
    "write_action",
    "write_legacy_action",
    "write_pipeline",
]
