"""Domain errors raised by the workshop services.

Every error carries an HTTP status code and a message that is safe to show to
the caller. The API layer turns them into the error envelope.
"""


class WorkshopError(Exception):
    status_code = 400
    default_message = "Request could not be completed"

    def __init__(self, message=None, *, errors=None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class NotFound(WorkshopError):
    """Entity is absent or not owned by the caller."""

    status_code = 404
    default_message = "Resource not found"


class Forbidden(WorkshopError):
    """Ownership or capability violation."""

    status_code = 403
    default_message = "Access denied"


class Conflict(WorkshopError):
    status_code = 409
    default_message = "Resource state conflicts with the request"


class BusinessRuleViolation(WorkshopError):
    status_code = 400
    default_message = "Business rule violated"


BadRequest = BusinessRuleViolation


class UpstreamFailure(WorkshopError):
    """Payment gateway rejected the request or could not be reached."""

    status_code = 502
    default_message = "Payment gateway request failed"


class SignatureMismatch(UpstreamFailure):
    status_code = 400
    default_message = "Payment verification failed"
