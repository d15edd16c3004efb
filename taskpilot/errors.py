"""
Error taxonomy for the agent.

Step and tool failures are never raised through the orchestrator; they are
recorded as observations. These exceptions cover the fatal and caller-facing
cases.
"""

from typing import Optional


class AgentError(Exception):
    """Base class for all agent errors."""


class ValidationError(AgentError):
    """Malformed goal input. Raised before anything is persisted."""


class PlanningError(AgentError):
    """The plan could not be parsed after repair attempts and one retry."""


class ToolError(AgentError):
    """A tool failed to execute. Retried locally, then triggers replanning."""


class TaskTimeoutError(AgentError, TimeoutError):
    """The task-level wall-clock deadline was exceeded."""


class ProviderError(AgentError):
    """A language-model backend failed (network, auth, bad response)."""

    def __init__(self, message: str, provider: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class LockBusyError(AgentError):
    """An exclusive resource is held by someone else. Try again shortly."""

    def __init__(self, resource: str, holder: str, age_seconds: int):
        super().__init__(
            f"{resource} is busy with '{holder}' ({age_seconds}s ago). Try again shortly."
        )
        self.resource = resource
        self.holder = holder
        self.age_seconds = age_seconds


class ConfigurationError(AgentError):
    """Required settings are missing or invalid."""
