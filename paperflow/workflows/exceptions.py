class WorkflowError(Exception):
    """Base exception for workflow registry errors."""


class WorkflowNotFoundError(WorkflowError):
    """Raised when a workflow id does not exist."""


class WorkflowValidationError(WorkflowError):
    """Raised when a workflow definition or its schema source is rejected."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]
