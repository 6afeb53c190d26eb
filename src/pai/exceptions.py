"""Error taxonomy for the pai engine.

Every error raised inside the engine derives from PaiError and carries an
``error_type`` tag. The runners normalise all of them into a failed
ResultEnvelope, so none of these ever escapes ActionRunner.run() or
PipelineRunner.run().
"""


class PaiError(Exception):
    """Base exception for engine errors."""

    error_type = "error"


class ResolutionError(PaiError):
    """Raised when an action or pipeline name is not found in any root."""

    error_type = "resolution"


class ValidationError(PaiError):
    """Raised when input or output fails its declared schema."""

    error_type = "validation"

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


class ExecutionError(PaiError):
    """Raised when an action's own logic fails."""

    error_type = "execution"


class CapabilityError(ExecutionError):
    """Raised by a capability handle when its backing service fails."""
    pass


class TransportError(PaiError):
    """Raised when cloud dispatch fails (network error or non-2xx)."""

    error_type = "transport"

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DefinitionError(PaiError):
    """Raised when a manifest or pipeline document is malformed."""

    error_type = "definition"


class ConfigError(DefinitionError):
    """Raised when engine configuration cannot be loaded."""
    pass
