"""Pipelines - sequential chains of actions.

Two declarative forms are supported.

Mapped form (explicit step ids, templated inputs, output mapping):

    name: blog_post
    description: Draft and proofread a post
    steps:
      - id: topic
        action: A_EXTRACT_TOPIC
        input:
          text: "{{input.text}}"
      - id: draft
        action: blog/write
        input:
          topic: "{{steps.topic.output.topic}}"
    output_mapping:
      topic: "{{steps.topic.output.topic}}"
      post: "{{steps.draft.output}}"

Piped form (each action receives the previous action's raw output):

    name: clean_text
    actions: [text/strip, text/proofread]

Definitions are loaded fresh from disk on every run. Steps run strictly in
declaration order; the first failure stops the pipeline.
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from pai.config.settings import EngineSettings
from pai.core.catalog import CatalogRoot
from pai.core.context import PipelineStepInfo, TraceInfo
from pai.core.result import ResultEnvelope
from pai.core.runner import ActionRunner
from pai.core.templating import interpolate, references
from pai.exceptions import DefinitionError, PaiError, ResolutionError
from pai.observability.logging import get_logger


logger = logging.getLogger(__name__)

PIPELINE_SUFFIXES = (".yaml", ".yml", ".json")

ProgressCallback = Callable[[dict[str, Any]], None]


# =============================================================================
# Definitions
# =============================================================================


class PipelineStep(BaseModel):
    """One step of a mapped pipeline."""

    id: str = Field(..., description="Step id, referenced as steps.<id>.output")
    action: str = Field(..., description="Action name")
    input: Any = Field(default_factory=dict, description="Input template")
    parallel: Optional[Any] = Field(None, description="Reserved; executed sequentially")
    foreach: Optional[Any] = Field(None, description="Reserved; executed once")

    class Config:
        extra = "forbid"


class PipelineDefinition(BaseModel):
    """A pipeline document in either form."""

    name: str
    description: str = ""
    steps: Optional[list[PipelineStep]] = None
    actions: Optional[list[str]] = None
    output_mapping: Optional[Any] = None

    class Config:
        extra = "forbid"
        frozen = True

    @model_validator(mode="after")
    def _check_form(self) -> "PipelineDefinition":
        if (self.steps is None) == (self.actions is None):
            raise ValueError("A pipeline declares exactly one of 'steps' or 'actions'")

        if self.steps is not None:
            if not self.steps:
                raise ValueError("'steps' must not be empty")
            seen = set()
            for step in self.steps:
                if step.id in seen:
                    raise ValueError(f"Duplicate step id '{step.id}'")
                seen.add(step.id)
        else:
            if not self.actions:
                raise ValueError("'actions' must not be empty")
            if self.output_mapping is not None:
                raise ValueError("'output_mapping' is only valid with 'steps'")
        return self

    @property
    def form(self) -> str:
        return "mapped" if self.steps is not None else "piped"

    @property
    def step_count(self) -> int:
        return len(self.steps) if self.steps is not None else len(self.actions)


class PipelineSummary(BaseModel):
    """One row of PipelineLoader.list()."""

    name: str
    source: str
    path: str
    description: Optional[str] = None
    form: Optional[str] = None
    steps: Optional[int] = None


# =============================================================================
# Loading
# =============================================================================


class PipelineLoader:
    """Finds pipeline documents across ordered roots (personal first)."""

    def __init__(self, roots: Iterable[CatalogRoot | tuple[str, Path]]):
        self.roots = [
            root if isinstance(root, CatalogRoot) else CatalogRoot(root[0], Path(root[1]))
            for root in roots
        ]

    def find(self, name: str) -> tuple[Path, str] | None:
        """Return (path, source) of the winning document, or None."""
        if not name or "/" in name or name.startswith("."):
            return None
        for root in self.roots:
            for suffix in PIPELINE_SUFFIXES:
                candidate = root.path / f"{name}{suffix}"
                if candidate.is_file():
                    return candidate, root.label
        return None

    def load(self, name: str) -> PipelineDefinition:
        """Load and validate a pipeline by name.

        Raises:
            ResolutionError: If no root holds the pipeline
            DefinitionError: If the document is malformed
        """
        found = self.find(name)
        if found is None:
            raise ResolutionError(f"Pipeline not found: {name}")
        path, _ = found
        return self.load_file(path, default_name=name)

    def load_file(self, path: Path, default_name: Optional[str] = None) -> PipelineDefinition:
        try:
            text = Path(path).read_text(encoding="utf-8")
            data = json.loads(text) if Path(path).suffix == ".json" else yaml.safe_load(text)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise DefinitionError(f"Cannot read pipeline {path}: {e}")

        if not isinstance(data, dict):
            raise DefinitionError(f"Pipeline {path} must contain a mapping")
        if default_name and "name" not in data:
            data["name"] = default_name

        try:
            return PipelineDefinition.model_validate(data)
        except PydanticValidationError as e:
            raise DefinitionError(f"Invalid pipeline {path}: {e}")

    def list(self) -> list[PipelineSummary]:
        """Enumerate pipelines, personal definitions shadowing system ones."""
        seen: dict[str, PipelineSummary] = {}

        for root in self.roots:
            if not root.path.is_dir():
                continue
            for path in sorted(root.path.iterdir()):
                if path.suffix not in PIPELINE_SUFFIXES or path.name.startswith((".", "_")):
                    continue
                if path.stem in seen:
                    continue
                try:
                    definition = self.load_file(path, default_name=path.stem)
                except DefinitionError as e:
                    logger.warning(f"Malformed pipeline: {e}")
                    seen[path.stem] = PipelineSummary(
                        name=path.stem, source=root.label, path=str(path), description=f"invalid pipeline: {e}"
                    )
                    continue
                seen[path.stem] = PipelineSummary(
                    name=path.stem,
                    source=root.label,
                    path=str(path),
                    description=definition.description,
                    form=definition.form,
                    steps=definition.step_count,
                )

        return [seen[name] for name in sorted(seen)]


# =============================================================================
# Running
# =============================================================================


class PipelineRunner:
    """Executes pipelines step by step through the ActionRunner."""

    def __init__(
        self,
        loader: PipelineLoader,
        action_runner: ActionRunner,
        on_progress: Optional[ProgressCallback] = None,
    ):
        """Initialize pipeline runner.

        Args:
            loader: Pipeline definition loader
            action_runner: Runner used for every step
            on_progress: Optional observer for progress events (side channel)
        """
        self.loader = loader
        self.action_runner = action_runner
        self.on_progress = on_progress

    @classmethod
    def from_settings(cls, settings: EngineSettings, **kwargs: Any) -> "PipelineRunner":
        loader = PipelineLoader([CatalogRoot(label, path) for label, path in settings.pipeline_roots])
        return cls(loader, ActionRunner.from_settings(settings), **kwargs)

    def run(
        self,
        name: str,
        input: Any = None,
        mode: Optional[str] = None,
        trace: Optional[TraceInfo] = None,
    ) -> ResultEnvelope:
        """Run a pipeline by name.

        Returns:
            ResultEnvelope; never raises
        """
        start_time = time.perf_counter()
        mode = mode or self.action_runner.settings.mode
        metadata: dict[str, Any] = {"pipeline": name, "mode": mode}
        if trace is not None:
            metadata["traceId"] = trace.trace_id

        try:
            definition = self.loader.load(name)
        except PaiError as e:
            return ResultEnvelope.fail(
                str(e), durationMs=_elapsed_ms(start_time), errorType=e.error_type, **metadata
            )

        return self.run_definition(definition, input, mode=mode, trace=trace, _start_time=start_time)

    def run_definition(
        self,
        definition: PipelineDefinition,
        input: Any = None,
        mode: Optional[str] = None,
        trace: Optional[TraceInfo] = None,
        _start_time: Optional[float] = None,
    ) -> ResultEnvelope:
        """Run an already-loaded pipeline definition."""
        start_time = _start_time or time.perf_counter()
        mode = mode or self.action_runner.settings.mode
        input = input if input is not None else {}
        structured = get_logger()

        structured.log_pipeline_start(definition.name, definition.form, definition.step_count)
        self._emit(
            "pipeline_started",
            pipeline=definition.name,
            form=definition.form,
            steps=definition.step_count,
        )

        if definition.form == "mapped":
            envelope = self._run_mapped(definition, input, mode, trace)
        else:
            envelope = self._run_piped(definition, input, mode, trace)

        duration_ms = _elapsed_ms(start_time)
        envelope.metadata.update({
            "pipeline": definition.name,
            "mode": mode,
            "durationMs": duration_ms,
        })
        if trace is not None:
            envelope.metadata["traceId"] = trace.trace_id

        status = "success" if envelope.success else "failed"
        structured.log_pipeline_complete(definition.name, duration_ms, status)
        self._emit("pipeline_completed", pipeline=definition.name, success=envelope.success, durationMs=duration_ms)
        return envelope

    def _run_mapped(
        self,
        definition: PipelineDefinition,
        input: Any,
        mode: str,
        trace: Optional[TraceInfo],
    ) -> ResultEnvelope:
        context: dict[str, Any] = {"input": input, "steps": {}}
        completed: list[str] = []

        for index, step in enumerate(definition.steps):
            self._warn_unsupported(definition.name, step)
            self._warn_forward_refs(definition.name, step, completed)

            step_input = interpolate(step.input, context)
            result = self._run_step(definition.name, step.id, step.action, index, step_input, mode, trace)

            if not result.success:
                return ResultEnvelope.fail(
                    f"Step '{step.id}' ({step.action}) failed: {result.error}",
                    step_results=dict(context["steps"]),
                    failedStep=step.id,
                    errorType=result.error_type,
                )

            context["steps"][step.id] = {"output": result.output}
            completed.append(step.id)

        if definition.output_mapping is None:
            output = context["steps"][definition.steps[-1].id]["output"]
        else:
            output = interpolate(definition.output_mapping, context)

        return ResultEnvelope(success=True, output=output, step_results=dict(context["steps"]))

    def _run_piped(
        self,
        definition: PipelineDefinition,
        input: Any,
        mode: str,
        trace: Optional[TraceInfo],
    ) -> ResultEnvelope:
        value = input
        completed: list[dict[str, Any]] = []

        for index, action in enumerate(definition.actions):
            step_id = str(index)
            result = self._run_step(definition.name, step_id, action, index, value, mode, trace)

            if not result.success:
                return ResultEnvelope.fail(
                    f"Step {index + 1} ({action}) failed: {result.error}",
                    step_results=completed,
                    failedStep=step_id,
                    errorType=result.error_type,
                )

            value = result.output
            completed.append({"action": action, "output": value})

        return ResultEnvelope(success=True, output=value, step_results=completed)

    def _run_step(
        self,
        pipeline: str,
        step_id: str,
        action: str,
        index: int,
        step_input: Any,
        mode: str,
        trace: Optional[TraceInfo],
    ) -> ResultEnvelope:
        structured = get_logger()
        structured.log_step_start(pipeline, step_id, action, index)
        self._emit("step_started", pipeline=pipeline, step=step_id, action=action, index=index)

        result = self.action_runner.run(
            action,
            step_input,
            mode=mode,
            trace=trace,
            pipeline=PipelineStepInfo(pipeline=pipeline, step_id=step_id, step_index=index),
        )

        if result.success:
            structured.log_step_complete(pipeline, step_id, result.metadata.get("durationMs", 0.0))
            self._emit("step_completed", pipeline=pipeline, step=step_id, action=action, index=index)
        else:
            structured.log_step_failure(pipeline, step_id, result.error)
            self._emit(
                "step_failed", pipeline=pipeline, step=step_id, action=action, index=index, error=result.error
            )
        return result

    def _emit(self, event: str, **payload: Any) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress({"type": event, **payload})
        except Exception as e:
            # Observers are a side channel; the pipeline keeps running
            logger.exception(f"Progress observer failed on {event}")
            get_logger().log_error(f"Progress observer failed: {e}", progress_event=event)

    def _warn_unsupported(self, pipeline: str, step: PipelineStep) -> None:
        for modifier in ("parallel", "foreach"):
            if getattr(step, modifier) is not None:
                message = (
                    f"Pipeline {pipeline}: step '{step.id}' uses '{modifier}', "
                    "which is not supported; running it once, in order"
                )
                logger.warning(message)
                get_logger().log_warning(message, pipeline=pipeline, step=step.id)

    def _warn_forward_refs(self, pipeline: str, step: PipelineStep, completed: list[str]) -> None:
        for ref in references(step.input):
            parts = ref.split(".")
            if parts[0] == "steps" and len(parts) > 1 and parts[1] not in completed:
                logger.debug(
                    f"Pipeline {pipeline}: step '{step.id}' references '{ref}' "
                    "before that step has run; it resolves to nothing"
                )


def _elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 3)
