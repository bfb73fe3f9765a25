"""Custom exceptions for the workflow automation engine."""


class WorkflowEngineError(Exception):
    """Base exception for the workflow automation engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(WorkflowEngineError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class ValidationError(WorkflowEngineError):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class ConflictError(WorkflowEngineError):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


class InvalidTransitionError(ConflictError):
    """An execution status change that the state machine does not allow."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition execution from '{current}' to '{target}'")


class ImmutableLogError(WorkflowEngineError):
    """Attempt to rewrite or remove an execution log entry."""

    def __init__(self, message: str = "Execution log entries are append-only"):
        super().__init__(message, 409)


class ActionError(WorkflowEngineError):
    """Raised by an action handler when its side effect cannot be performed.

    The action registry converts it into a failed result; it never escapes
    to the driver.
    """

    def __init__(self, message: str):
        super().__init__(message, 500)
