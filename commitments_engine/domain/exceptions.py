"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Input to a factory or transition was rejected"""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class InvalidRecurrenceError(ValidationError):
    """Recurrence pattern parameters are malformed"""

    pass


class InvalidTransitionError(DomainException):
    """Lifecycle transition guard failed for the current status"""

    def __init__(self, message: str, current_status=None, action: str | None = None):
        super().__init__(message)
        self.current_status = current_status
        self.action = action


class LockedWindowError(InvalidTransitionError):
    """Commitment can no longer be edited or cancelled"""

    pass


class CommitmentNotFoundError(DomainException):
    """Referenced commitment does not exist"""

    pass
