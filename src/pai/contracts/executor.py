"""Executor contract - where a validated action invocation actually runs.

Built-in executors:
- local: import the implementation and call execute(input, context)
- cloud: POST the input to the action's worker endpoint

Third-party executors register under the ``pai.executors`` entry-point group:

    [project.entry-points."pai.executors"]
    sandbox = "my_package.executor:SandboxExecutor"
"""

from abc import ABC, abstractmethod
from typing import Any

from pai.config.settings import EngineSettings
from pai.core.context import ExecutionContext
from pai.core.manifest import LoadedAction


class ExecutorPlugin(ABC):
    """Interface for execution backends."""

    #: Whether the runner validates output produced by this backend
    validates_output: bool = True

    def configure(self, settings: EngineSettings) -> None:
        """Receive engine settings after instantiation. Default is a no-op."""
        pass

    @abstractmethod
    def execute(self, action: LoadedAction, input: Any, context: ExecutionContext) -> Any:
        """Run one invocation and return its raw output.

        Args:
            action: Loaded action (manifest, validators, implementation)
            input: Input that already passed validation
            context: Execution context for this invocation

        Returns:
            Action output (validated afterwards when validates_output is True)

        Raises:
            PaiError subclass on failure; other exceptions are treated as
            execution failures by the runner
        """
        ...
