"""Domain error taxonomy.

Service modules raise these; the API layer renders them into the
response envelope using `status_code`.
"""
from typing import Optional


class TicketFlowError(Exception):
    """Base class for rule violations reported to the caller."""

    status_code = 500
    kind = "internal"

    def __init__(self, message: str, errors: Optional[list[dict]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class NotFoundError(TicketFlowError):
    """Referenced user, project or ticket does not resolve to an active record."""

    status_code = 404
    kind = "not_found"


class ConflictError(TicketFlowError):
    """Duplicate project name, duplicate membership or duplicate email."""

    status_code = 409
    kind = "conflict"


class PermissionDeniedError(TicketFlowError):
    """Access evaluator denied the action, or a self-modification guard tripped."""

    status_code = 403
    kind = "forbidden"


class InvalidInputError(TicketFlowError):
    """Enum value outside the allowed set, numeric field out of range, bad identifier."""

    status_code = 400
    kind = "invalid_input"


class AuthenticationError(TicketFlowError):
    """Missing, invalid or expired credentials."""

    status_code = 401
    kind = "unauthenticated"
