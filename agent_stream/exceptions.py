from typing import Optional


class AgentStreamError(Exception):
    """Base exception for agent-stream errors."""


class ToolValidationError(AgentStreamError):
    """Raised when tool arguments fail schema validation. Never retried."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ToolNotFound(AgentStreamError):
    """Raised when the model calls a capability that isn't registered."""


class ToolExecutionError(AgentStreamError):
    """Raised when a tool keeps failing after all retries."""

    def __init__(self, message: str, attempts: int = 1):
        super().__init__(message)
        self.attempts = attempts


class ToolTimeoutError(ToolExecutionError):
    """Raised when a tool keeps timing out after all retries."""


class RunawayGenerationDetected(AgentStreamError):
    """Raised (or recorded on the turn) when the model output degenerates."""


class ModelNotLoaded(AgentStreamError):
    """Raised before a turn starts when no model is loaded."""


class ModelLoading(AgentStreamError):
    """Raised before a turn starts while the model is still loading."""


class SystemBusy(AgentStreamError):
    """Raised before a turn starts when the model or turn slots are taken."""
