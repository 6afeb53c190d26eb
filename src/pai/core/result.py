"""Result envelope returned by the action and pipeline runners."""

from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class ResultEnvelope(BaseModel):
    """Uniform success/error/metadata wrapper.

    Invariants:
    - success=True: output is set (it may legitimately be None only when the
      action returned None) and error is None
    - success=False: error is a non-empty string and output is None
    """

    success: bool
    output: Any = None
    error: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    step_results: Optional[Any] = Field(None, description="Accumulated pipeline step outputs")

    @model_validator(mode="after")
    def _check_invariants(self) -> "ResultEnvelope":
        if self.success and self.error is not None:
            raise ValueError("A successful result cannot carry an error")
        if not self.success:
            if not self.error:
                raise ValueError("A failed result needs a non-empty error message")
            if self.output is not None:
                raise ValueError("A failed result cannot carry output")
        return self

    @classmethod
    def ok(cls, output: Any, **metadata: Any) -> "ResultEnvelope":
        return cls(success=True, output=output, metadata=metadata)

    @classmethod
    def fail(cls, error: str, step_results: Any = None, **metadata: Any) -> "ResultEnvelope":
        return cls(
            success=False,
            error=error or "Unknown error",
            step_results=step_results,
            metadata=metadata,
        )

    @property
    def error_type(self) -> Optional[str]:
        return self.metadata.get("errorType")

    def to_dict(self) -> dict[str, Any]:
        """Wire shape: {success, output?, error?, metadata?, stepResults?}."""
        data: dict[str, Any] = {"success": self.success}
        if self.success:
            data["output"] = self.output
        else:
            data["error"] = self.error
        if self.metadata:
            data["metadata"] = self.metadata
        if self.step_results is not None:
            data["stepResults"] = self.step_results
        return data
