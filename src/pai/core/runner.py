"""Action runner - resolves, validates, executes and validates one action.

The runner:
1. Resolves the name through the ActionCatalog
2. Loads manifest and validators
3. Validates input (the implementation is never called on invalid input)
4. Builds the capability set declared in ``requires``
5. Builds a fresh ExecutionContext
6. Hands the invocation to the executor for the mode (local or cloud)
7. Validates output (backends that own their output contract skip this)
8. Returns a ResultEnvelope

run() never raises: every failure becomes a failed envelope.
"""

import logging
import time
from typing import Any, Optional

from pai.config.settings import EngineSettings
from pai.core.capabilities import build_capabilities
from pai.core.catalog import ActionCatalog, CatalogRoot
from pai.core.context import ExecutionContext, PipelineStepInfo, TraceInfo
from pai.core.manifest import LoadedAction
from pai.core.registry import EXECUTORS_GROUP, SECRETS_GROUP, MissingPluginError, PluginRegistry
from pai.core.result import ResultEnvelope
from pai.core.validation import format_errors
from pai.exceptions import (
    ConfigError,
    DefinitionError,
    ExecutionError,
    PaiError,
    ResolutionError,
    ValidationError,
)
from pai.observability.logging import get_logger


logger = logging.getLogger(__name__)


class ActionRunner:
    """Runs single actions and wraps the outcome in a ResultEnvelope."""

    def __init__(
        self,
        catalog: ActionCatalog,
        settings: Optional[EngineSettings] = None,
        registry: Optional[PluginRegistry] = None,
        llm_transport: Any = None,
    ):
        """Initialize runner.

        Args:
            catalog: Catalog used to resolve action names
            settings: Engine settings (mode default, cloud and llm config)
            registry: Plugin registry for executors and secrets providers
            llm_transport: Optional httpx transport for the llm capability (tests)
        """
        self.catalog = catalog
        self.settings = settings or EngineSettings()
        self.registry = registry or PluginRegistry()
        self.llm_transport = llm_transport

    @classmethod
    def from_settings(cls, settings: EngineSettings, **kwargs: Any) -> "ActionRunner":
        """Build a runner whose catalog searches the settings' action roots."""
        catalog = ActionCatalog([CatalogRoot(label, path) for label, path in settings.action_roots])
        return cls(catalog, settings=settings, **kwargs)

    def run(
        self,
        name: str,
        input: Any = None,
        mode: Optional[str] = None,
        trace: Optional[TraceInfo] = None,
        pipeline: Optional[PipelineStepInfo] = None,
    ) -> ResultEnvelope:
        """Run an action.

        Args:
            name: Action name (A_NAME or category/name)
            input: Input value (a mapping for most actions)
            mode: "local" or "cloud" (defaults to settings.mode)
            trace: Optional trace identifiers
            pipeline: Optional pipeline step metadata

        Returns:
            ResultEnvelope; never raises
        """
        mode = mode or self.settings.mode
        start_time = time.perf_counter()
        structured = get_logger()
        structured.log_action_start(name, mode, trace_id=trace.trace_id if trace else None)

        metadata: dict[str, Any] = {"action": name, "mode": mode}
        if trace is not None:
            metadata["traceId"] = trace.trace_id

        try:
            output, action = self._run(name, input if input is not None else {}, mode, trace, pipeline)
        except PaiError as e:
            duration_ms = _elapsed_ms(start_time)
            logger.info(f"Action {name} failed ({e.error_type}): {e}")
            structured.log_action_failure(name, e.error_type, str(e), duration_ms)
            return ResultEnvelope.fail(str(e), durationMs=duration_ms, errorType=e.error_type, **metadata)
        except Exception as e:
            # Anything that slipped past the executor is still an execution failure
            duration_ms = _elapsed_ms(start_time)
            logger.exception(f"Unexpected error running {name}")
            structured.log_action_failure(name, ExecutionError.error_type, str(e), duration_ms)
            return ResultEnvelope.fail(
                f"Execution failed: {e}",
                durationMs=duration_ms,
                errorType=ExecutionError.error_type,
                **metadata,
            )

        duration_ms = _elapsed_ms(start_time)
        structured.log_action_complete(name, action.version, mode, duration_ms)
        return ResultEnvelope.ok(output, durationMs=duration_ms, version=action.version, **metadata)

    def _run(
        self,
        name: str,
        input: Any,
        mode: str,
        trace: Optional[TraceInfo],
        pipeline: Optional[PipelineStepInfo],
    ) -> tuple[Any, LoadedAction]:
        location = self.catalog.resolve(name)
        if location is None:
            raise ResolutionError(f"Action not found: {name}")

        action = self.catalog.load(location)
        logger.debug(f"Loaded {action!r} from {location.path}")

        input_result = action.input_validator.validate(input)
        if not input_result.valid:
            raise ValidationError(format_errors("Input", input_result), input_result.errors)
        validated_input = input_result.value

        context = ExecutionContext(
            mode=mode,
            capabilities=build_capabilities(
                action.manifest.requires,
                llm_url=self.settings.llm.url,
                llm_api_key=self.settings.llm.api_key,
                llm_timeout=self.settings.llm.timeout,
                llm_transport=self.llm_transport,
            ),
            env=self._resolve_env(action),
            trace=trace,
            pipeline=pipeline,
        )

        executor = self._get_executor(mode)
        output = executor.execute(action, validated_input, context)

        if executor.validates_output:
            output_result = action.output_validator.validate(output)
            if not output_result.valid:
                raise ValidationError(format_errors("Output", output_result), output_result.errors)
            output = output_result.value

        return output, action

    def _get_executor(self, mode: str):
        try:
            executor = self.registry.get(EXECUTORS_GROUP, mode)
        except MissingPluginError as e:
            raise DefinitionError(f"Unknown execution mode '{mode}': {e}")
        executor.configure(self.settings)
        return executor

    def _resolve_env(self, action: LoadedAction) -> dict[str, str]:
        secrets = action.manifest.deployment.secrets
        if not secrets:
            return {}

        try:
            provider = self.registry.get(SECRETS_GROUP, self.settings.secrets_provider)
        except MissingPluginError as e:
            raise ConfigError(str(e))
        found, missing = provider.resolve(secrets)
        if missing:
            message = f"Action {action.name} declares secrets that are not set: {', '.join(missing)}"
            logger.warning(message)
            get_logger().log_warning(message, action=action.name, missing=missing)
        return found


def _elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 3)
