class DomainException(Exception):
    code = "DOMAIN_ERROR"


class NotFoundError(DomainException):
    code = "NOT_FOUND"


class InvalidTransitionError(DomainException):
    code = "INVALID_TRANSITION"

    def __init__(self, status, action, message: str | None = None):
        self.status = status
        self.action = action
        super().__init__(message or f"Cannot {action.value} an order in status {status.value}")


class ValidationError(DomainException):
    code = "VALIDATION_ERROR"


class UnauthorizedError(DomainException):
    code = "UNAUTHORIZED"


class ConflictError(DomainException):
    code = "CONFLICT"
