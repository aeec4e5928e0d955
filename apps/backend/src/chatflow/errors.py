"""Exceptions raised across the automation engine."""


class ChatFlowError(Exception):
    """Base class for all ChatFlow errors."""


class GraphIntegrityError(ChatFlowError):
    """Raised when a mutation or a run would reference a missing or invalid step."""


class AutomationLoopError(ChatFlowError):
    """Raised when a run revisits a step or exceeds its step budget."""


class PreviewError(ChatFlowError):
    """Raised for invalid interactions with a preview session."""


class ServiceError(ChatFlowError):
    """Raised when an external collaborator call fails."""

    def __init__(self, message: str, error_type: str = "service_error"):
        self.error_type = error_type
        super().__init__(message)
