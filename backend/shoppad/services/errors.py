# Overview: Expected, user-facing failure kinds shared by the service layer.

"""
Domain error taxonomy.

WHY: Every expected failure (unknown session, expired window, card already
claimed, declined payment...) is a structured result for the client, not a
crash. Services raise these; routes turn them into JSON with the matching
HTTP status. Anything that is not a DomainError is an infrastructure failure
and becomes a generic 500.
"""


class DomainError(Exception):
    """Base for expected failures. `code` is a stable machine-readable tag."""
    status_code = 400
    default_code = "BAD_REQUEST"

    def __init__(self, message: str, code: str | None = None, payload: dict | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.payload = payload or {}

    def to_dict(self) -> dict:
        data = {"error": self.message, "code": self.code}
        data.update(self.payload)
        return data


class NotFoundError(DomainError):
    status_code = 404
    default_code = "NOT_FOUND"


class ExpiredError(DomainError):
    status_code = 400
    default_code = "EXPIRED"


class InvalidStateError(DomainError):
    status_code = 400
    default_code = "INVALID_STATE"


class ForbiddenError(DomainError):
    status_code = 403
    default_code = "FORBIDDEN"


class ConflictError(DomainError):
    status_code = 409
    default_code = "CONFLICT"


class UnauthenticatedError(DomainError):
    status_code = 401
    default_code = "UNAUTHENTICATED"


class DeclinedError(DomainError):
    status_code = 402
    default_code = "PAYMENT_DECLINED"


class EmptyInputError(DomainError):
    status_code = 400
    default_code = "EMPTY_INPUT"
