"""
Errors Module

Typed errors raised by the settlement engine. Each error carries a
machine-readable ``kind`` and a human-readable message; the API layer maps
them onto HTTP status codes.

Hierarchy:
    SettlementError
        NotFoundError       - trip, expense or share absent
        ForbiddenError      - actor not allowed to perform the action
        InvalidInputError   - malformed amounts, participants or splits
        ConflictError       - share already paid
        BackendUnavailableError - Firestore could not be reached or initialized
"""


class SettlementError(Exception):
    """Base class for all engine errors."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """Structured form used in API error responses."""
        return {"kind": self.kind, "message": self.message}


class NotFoundError(SettlementError):
    kind = "not_found"
    status_code = 404


class ForbiddenError(SettlementError):
    kind = "forbidden"
    status_code = 403


class InvalidInputError(SettlementError, ValueError):
    """Input validation failure. Also a ValueError for plain callers."""

    kind = "invalid_input"
    status_code = 400


class ConflictError(SettlementError):
    kind = "conflict"
    status_code = 409


class BackendUnavailableError(SettlementError):
    kind = "unavailable"
    status_code = 503
