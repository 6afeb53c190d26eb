"""Execution context - passed to an action's execute(input, context).

A context is built fresh for every invocation and never shared or cached.
"""

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from pai.core.capabilities import CapabilitySet


Mode = Literal["local", "cloud"]


@dataclass(frozen=True)
class TraceInfo:
    """Trace identifiers propagated to the action (and the X-Trace-Id header)."""

    trace_id: str
    span_id: Optional[str] = None


@dataclass(frozen=True)
class PipelineStepInfo:
    """Set when the action runs as a pipeline step."""

    pipeline: str
    step_id: str
    step_index: int


@dataclass
class ExecutionContext:
    """Per-invocation bundle handed to an action.

    Attributes:
        mode: "local" or "cloud"
        capabilities: Only the capabilities the manifest declares
        env: Secrets listed in the manifest's deployment hints
        trace: Optional trace identifiers
        pipeline: Optional pipeline step metadata
    """

    mode: Mode
    capabilities: CapabilitySet = field(default_factory=CapabilitySet)
    env: dict[str, str] = field(default_factory=dict)
    trace: Optional[TraceInfo] = None
    pipeline: Optional[PipelineStepInfo] = None

    def __getattr__(self, name: str) -> Any:
        # context.llm / context.shell / ... proxy to the capability set
        capabilities = self.__dict__.get("capabilities")
        if capabilities is not None and hasattr(capabilities, name):
            return getattr(capabilities, name)
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def get_env(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get a declared secret from the env block."""
        return self.env.get(key, default)
