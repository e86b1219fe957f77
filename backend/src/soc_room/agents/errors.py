"""Exception hierarchy for the orchestration core.

Configuration and transition errors are raised before any state changes.
Transport errors are raised after the orchestrator has rolled back.
Research failures never raise (see tools/research.py).
"""


class OrchestratorError(Exception):
    """Base class for errors surfaced by the orchestration core."""


class ConfigurationError(OrchestratorError):
    """A role is unknown or has no voice backend agent ID."""

    def __init__(self, role: str, message: str | None = None) -> None:
        self.role = role
        super().__init__(message or f"Agent '{role}' is not configured")


class InvalidTransitionError(OrchestratorError):
    """The requested operation is not valid in the current state."""


class SessionTransportError(OrchestratorError):
    """The voice session transport failed."""


class SessionStartError(SessionTransportError):
    """A voice session could not be opened."""

    def __init__(self, agent_id: str, message: str) -> None:
        self.agent_id = agent_id
        super().__init__(message)


class TransitionAbortedError(OrchestratorError):
    """A scheduled agent switch was cancelled by disconnect()."""


class AttachmentStorageError(OrchestratorError):
    """An attachment could not be written to storage."""
