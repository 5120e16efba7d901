"""
Domain exceptions for the mission workflow.
Every error carries the API error code and HTTP status it is surfaced with,
so blueprints can simply let them propagate to the global handler in main.py.
"""


class MissionWorkflowError(Exception):
    error_code = "SERVER_ERROR"
    status_code = 500

    def __init__(self, message=None, details=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message
        self.details = details


class NotFound(MissionWorkflowError):
    error_code = "NOT_FOUND"
    status_code = 404


class InvalidTransition(MissionWorkflowError):
    """A state machine precondition was violated."""
    error_code = "INVALID_TRANSITION"
    status_code = 409


class AlreadyCompleted(InvalidTransition):
    error_code = "ALREADY_COMPLETED"


class RequestValidationError(MissionWorkflowError):
    error_code = "VALIDATION_ERROR"
    status_code = 400


class ProviderError(MissionWorkflowError):
    """A judge provider failed or answered with something unparsable."""
    error_code = "EXTERNAL_SERVICE_ERROR"
    status_code = 502


class EvidenceFetchError(ProviderError):
    pass


class InsufficientBalance(MissionWorkflowError):
    error_code = "INSUFFICIENT_BALANCE"
    status_code = 400


class ConcurrencyConflict(MissionWorkflowError):
    """Another writer changed the same row first. Safe to retry after re-reading."""
    error_code = "CONFLICT"
    status_code = 409
