"""
Error taxonomy for the library circulation server.

Every business-rule violation raised by the repositories and the loan engine
is a ``LibraryError`` subclass carrying an ``ErrorKind``. The HTTP layer and
the tool bridge translate the kind into a status code or an ``isError``
response without inspecting message text.
"""

import enum
from typing import Any


class ErrorKind(str, enum.Enum):
    """Broad category of a failure, independent of transport."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    LIMIT_EXCEEDED = "limit_exceeded"
    VALIDATION = "validation"
    SYSTEM = "system"


_STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.LIMIT_EXCEEDED: 422,
    ErrorKind.VALIDATION: 400,
    ErrorKind.SYSTEM: 500,
}


class LibraryError(Exception):
    """Base exception for all library operations."""

    kind: ErrorKind = ErrorKind.SYSTEM

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def code(self) -> str:
        """Stable machine-readable name, e.g. ``CopyUnavailable``."""
        return type(self).__name__

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.kind]

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error": self.message,
            "code": self.code,
            "kind": self.kind.value,
        }
        if self.details:
            payload["details"] = self.details
        return payload


# === Kinds ===


class NotFoundError(LibraryError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(LibraryError):
    kind = ErrorKind.CONFLICT


class ForbiddenError(LibraryError):
    kind = ErrorKind.FORBIDDEN


class LimitExceededError(LibraryError):
    kind = ErrorKind.LIMIT_EXCEEDED


class ValidationError(LibraryError):
    kind = ErrorKind.VALIDATION


class StorageError(LibraryError):
    """Unexpected database failure; the transaction has been rolled back."""

    kind = ErrorKind.SYSTEM


# === Not found ===


class BookNotFound(NotFoundError):
    pass


class CopyNotFound(NotFoundError):
    pass


class ShelfNotFound(NotFoundError):
    pass


class MemberNotFound(NotFoundError):
    pass


class LoanNotFound(NotFoundError):
    pass


class UserNotFound(NotFoundError):
    pass


class InvalidLoanIds(NotFoundError):
    """Some loan ids in a batch do not exist; nothing was mutated."""

    def __init__(self, missing_ids: list[int]):
        super().__init__(
            f"Some loan IDs are invalid: {', '.join(str(i) for i in missing_ids)}",
            missing_ids=missing_ids,
        )
        self.missing_ids = missing_ids


class NoMatchingLoans(NotFoundError):
    """None of the loan ids in a QR payload exist.

    Carries enough context for the caller to correct the scan: how many
    loans are open overall and, when a member was named, which loan ids that
    member actually has open.
    """

    def __init__(
        self,
        requested_ids: list[int],
        total_active_loans: int,
        member_id: int | None = None,
        member_open_loan_ids: list[int] | None = None,
    ):
        message = (
            f"No active loans found with IDs: {', '.join(str(i) for i in requested_ids)}. "
            f"There are {total_active_loans} active loans in the system."
        )
        if member_id is not None:
            open_ids = member_open_loan_ids or []
            if open_ids:
                message += (
                    f" Member ID {member_id} has active loans. "
                    f"Member has different active loans: {', '.join(str(i) for i in open_ids)}."
                )
            else:
                message += f" Member ID {member_id} has no active loans."
        super().__init__(
            message,
            requested_ids=requested_ids,
            total_active_loans=total_active_loans,
            member_id=member_id,
            member_open_loan_ids=member_open_loan_ids or [],
        )
        self.requested_ids = requested_ids
        self.total_active_loans = total_active_loans
        self.member_id = member_id
        self.member_open_loan_ids = member_open_loan_ids or []


# === Conflicts ===


class CopyUnavailable(ConflictError):
    pass


class AlreadyReturned(ConflictError):
    pass


class AlreadyOverdue(ConflictError):
    pass


class NoFineDue(ConflictError):
    pass


class AlreadyPaid(ConflictError):
    pass


class HasActiveLoan(ConflictError):
    pass


class HasActiveLoans(ConflictError):
    pass


class ShelfNotEmpty(ConflictError):
    pass


class DuplicateError(ConflictError):
    """Unique constraint (isbn, barcode, email, username) would be violated."""


# === Forbidden ===


class MemberNotEligible(ForbiddenError):
    pass


class MemberLoanMismatch(ForbiddenError):
    pass


class InvalidCredentials(ForbiddenError):
    pass


# === Limits ===


class LoanLimitExceeded(LimitExceededError):
    pass


class RenewalLimitExceeded(LimitExceededError):
    pass


# === Validation ===


class InsufficientPayment(ValidationError):
    pass


class InvalidPayload(ValidationError):
    pass
