# Overview: Lending error taxonomy shared by services, the gateway and routes.

"""
Every failure a caller can recover from is a LendingError subclass.

Each subclass carries a stable `kind` string; the gateway turns a raised
error into Result.failure(kind, message) and the routes map kinds to HTTP
status codes. Services raise, only the gateway catches.
"""


class LendingError(Exception):
    """Base class for recoverable lending failures."""

    kind = "LendingError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LendingError):
    """400-level input problem (bad shape, missing or out-of-range field)."""

    kind = "InvalidInput"


class NotFound(LendingError):
    """Referenced item, user, store or transaction does not exist."""

    kind = "NotFound"


class Unauthorized(LendingError):
    """Actor's role does not allow the operation."""

    kind = "Unauthorized"


class ItemUnavailable(LendingError):
    """Item is not in the `available` state."""

    kind = "ItemUnavailable"


class InsufficientStock(LendingError):
    """Requested quantity exceeds the units currently on the shelf."""

    kind = "InsufficientStock"


class DuplicateRequest(LendingError):
    """The user already holds an open transaction for this item."""

    kind = "DuplicateRequest"


class InvalidState(LendingError):
    """Transition not allowed from the entity's current state."""

    kind = "InvalidState"


class AuditFailure(LendingError):
    """Audit row could not be written; the whole unit of work is rolled back."""

    kind = "AuditFailure"


# State conflicts share HTTP 409
HTTP_STATUS_BY_KIND = {
    ValidationError.kind: 400,
    Unauthorized.kind: 403,
    NotFound.kind: 404,
    ItemUnavailable.kind: 409,
    InsufficientStock.kind: 409,
    DuplicateRequest.kind: 409,
    InvalidState.kind: 409,
    AuditFailure.kind: 500,
}
