"""Error taxonomy for the Praxis orchestration core."""

from __future__ import annotations


class PraxisError(Exception):
    """Base class for all Praxis errors."""

    code = "praxis_error"


class EndpointUnavailable(PraxisError):
    """Raised when the model endpoint cannot be reached."""

    code = "endpoint_unavailable"


class ModelNotFound(EndpointUnavailable):
    """Raised when a role model is not pulled on the endpoint."""

    code = "model_not_found"

    def __init__(self, model: str):
        self.model = model
        super().__init__(f"Model '{model}' not available in Ollama. Run: ollama pull {model}")


class CallTimeout(PraxisError):
    """Raised when a model call exceeds its per-call timeout."""

    code = "call_timeout"


class MalformedModelOutput(PraxisError):
    """Raised when orchestrator output cannot be parsed into a decision."""

    code = "malformed_model_output"

    def __init__(self, message: str, raw: str = ""):
        self.raw = raw
        super().__init__(message)


class InvalidAction(PraxisError):
    """Raised when an action names an unknown tool or violates its schema."""

    code = "invalid_action"


class ToolExecutionError(PraxisError):
    """Raised by tool implementations when their work fails."""

    code = "tool_execution_error"


class TurnBudgetExceeded(PraxisError):
    """Raised when a session has no turns left."""

    code = "turn_budget_exceeded"


class DepthBudgetExceeded(PraxisError):
    """Raised when a delegation would nest deeper than max_depth."""

    code = "depth_budget_exceeded"

    def __init__(self, depth: int, max_depth: int):
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(f"Sub-agent depth {depth} exceeds max_depth {max_depth}")


class SessionCancelled(PraxisError):
    """Raised when a session is cancelled by its caller."""

    code = "cancelled"


class InternalInvariantViolation(PraxisError):
    """Raised when an orchestration invariant is broken. Always fatal."""

    code = "internal_invariant_violation"


class ConfigError(PraxisError):
    """Raised when configuration cannot be loaded or is invalid."""

    code = "config_error"
