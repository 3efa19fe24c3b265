"""
Domain exceptions for the negotiation engine and the deal store.

WHAT: Error taxonomy shared by the store service, HTTP client and engine
WHY: Callers decide retry/surface/swallow purely by exception type
HOW: Custom exception classes with error codes, messages and details
"""

from typing import Optional, Any


class DealDeskException(Exception):
    """Base class for deal negotiation exceptions."""

    code = "DEALDESK_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.details = details


class PreconditionFailedError(DealDeskException):
    """Illegal transition: terminal deal, non-participant or non-owner actor."""

    code = "PRECONDITION_FAILED"

    @classmethod
    def terminal(cls, deal_id: str, status: str) -> "PreconditionFailedError":
        return cls(
            message=f"Deal {deal_id} is already {status}",
            details={"deal_id": deal_id, "status": status}
        )

    @classmethod
    def not_participant(cls, deal_id: str, actor_id: str) -> "PreconditionFailedError":
        return cls(
            message=f"Actor {actor_id} is not a participant of deal {deal_id}",
            details={"deal_id": deal_id, "actor_id": actor_id}
        )


class ValidationFailedError(DealDeskException):
    """Non-positive quantity/price or otherwise malformed terms."""

    code = "VALIDATION_FAILED"


class NotFoundError(DealDeskException):
    """Stale reference to a deleted (or never created) record."""

    code = "NOT_FOUND"

    def __init__(self, kind: str, record_id: str):
        super().__init__(
            message=f"{kind.capitalize()} not found: {record_id}",
            details={"kind": kind, "id": record_id}
        )
        self.kind = kind
        self.record_id = record_id


class TransientStoreError(DealDeskException):
    """Store unreachable, timed out or answered with a server error."""

    code = "TRANSIENT_STORE_FAILURE"


ERROR_CODES = {
    PreconditionFailedError.code: PreconditionFailedError,
    ValidationFailedError.code: ValidationFailedError,
    NotFoundError.code: NotFoundError,
    TransientStoreError.code: TransientStoreError,
}
