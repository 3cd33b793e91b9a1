"""
Loan models for the library circulation server.

These models represent the loan ledger and the requests and results of the
loan engine:
- Loan / LoanDetails: one row of the ledger, optionally joined with the
  copy, book and member it refers to
- CheckoutRequest, ReturnItem, QRReturnRequest: canonical engine inputs that
  every accepted external payload shape is normalized onto
- CheckoutResult, ReturnResult, BatchReturnResult, QRReturnResult: engine
  outputs, including per-item failures for batch operations
- TransactionGroup: the loans created together by one checkout call
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field

from ..database.schema import LoanStatusEnum, ReturnConditionEnum

LoanStatus = LoanStatusEnum
ReturnCondition = ReturnConditionEnum


class Loan(BaseModel):
    """One loan as stored in the ledger."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    book_copy_id: int
    member_id: int
    transaction_id: str | None = None
    checkout_date: datetime
    due_date: datetime
    return_date: datetime | None = None
    status: LoanStatus
    return_condition: ReturnCondition | None = None
    fine_amount: float = 0.0
    fine_paid: bool = False
    fine_paid_date: datetime | None = None
    renewal_count: int = 0
    notes: str | None = None
    rating: int | None = None
    review: str | None = None

    @property
    def is_open(self) -> bool:
        return self.return_date is None


class LoanDetails(Loan):
    """A loan joined with the copy, book, shelf and member it refers to."""

    book_id: int | None = None
    book_title: str | None = None
    book_author: str | None = None
    isbn: str | None = None
    barcode: str | None = None
    location_code: str | None = None
    copy_status: str | None = None
    shelf_name: str | None = None
    member_name: str | None = None
    member_email: str | None = None
    days_overdue: int = 0


# === Canonical requests ===


class CheckoutRequest(BaseModel):
    """Borrow one or more copies for a single member in one call."""

    member_id: int = Field(..., gt=0)
    copy_ids: list[int] = Field(..., min_length=1)
    duration_days: int | None = Field(
        None,
        description="Loan length; the policy default applies when omitted",
        ge=1,
        le=365,
    )


class ReturnItem(BaseModel):
    loan_id: int = Field(..., gt=0)
    condition: ReturnCondition = ReturnCondition.GOOD
    note: str | None = Field(None, max_length=1000)


class BatchReturnRequest(BaseModel):
    returns: list[ReturnItem] = Field(..., min_length=1)


class QRReturnRequest(BaseModel):
    """Loans named by a scanned QR code, plus optional ownership context."""

    loan_ids: list[int] = Field(..., min_length=1)
    member_id: int | None = None
    skip_member_check: bool = False
    transaction_id: str | None = None


class RenewRequest(BaseModel):
    extension_days: int | None = Field(None, ge=1, le=365)


class PayFineRequest(BaseModel):
    amount: float = Field(..., gt=0)


class NoteRequest(BaseModel):
    note: str = Field(..., min_length=1, max_length=1000)


# === Engine results ===


class CheckoutFailure(BaseModel):
    book_copy_id: int
    error: str
    kind: str


class CheckoutResult(BaseModel):
    transaction_id: str
    member_id: int
    loans: list[Loan] = Field(default_factory=list)
    errors: list[CheckoutFailure] = Field(default_factory=list)

    @computed_field
    @property
    def partial(self) -> bool:
        return bool(self.loans) and bool(self.errors)


class ReturnResult(BaseModel):
    """
    Outcome of a single return.

    ``returned`` lists every loan closed by the call: the named loan first,
    then any other open loans of its transaction group.
    """

    loan: Loan
    returned: list[Loan] = Field(default_factory=list)
    transaction_id: str | None = None

    @computed_field
    @property
    def total_fine(self) -> float:
        return sum(loan.fine_amount for loan in self.returned)


class ReturnFailure(BaseModel):
    loan_id: int
    error: str
    kind: str


class BatchReturnResult(BaseModel):
    returned: list[Loan] = Field(default_factory=list)
    errors: list[ReturnFailure] = Field(default_factory=list)

    @computed_field
    @property
    def partial(self) -> bool:
        return bool(self.errors)


class QRReturnResult(BaseModel):
    count: int
    already_returned: bool = False
    returned: list[Loan] = Field(default_factory=list)
    skipped_ids: list[int] = Field(
        default_factory=list, description="Named loans that were already closed"
    )
    dropped_ids: list[int] = Field(
        default_factory=list, description="Named loans belonging to another member"
    )
    transaction_id: str | None = None
    message: str


# === Reporting ===


class LoanStatistics(BaseModel):
    active_loans: int
    overdue_loans: int
    current_month_checkouts: int
    current_month_returns: int
    uncollected_fines: float


class CategoryCount(BaseModel):
    category: str
    count: int


class MemberStatistics(BaseModel):
    """One member's borrowing record; Lost loans count as returned."""

    member_id: int
    total_loans: int = 0
    active_loans: int = 0
    returned_loans: int = 0
    overdue_loans: int = 0
    favorite_categories: list[CategoryCount] = Field(default_factory=list)


class PopularBook(BaseModel):
    book_id: int
    title: str
    author: str | None = None
    borrow_count: int


class TransactionGroup(BaseModel):
    """
    Loans sharing one transaction id, viewed as a single borrow event.

    Loans without a transaction id form a group of one keyed by their own
    loan id so every loan appears in exactly one group.
    """

    transaction_id: str | None
    member_id: int
    member_name: str | None = None
    loans: list[LoanDetails]
    loan_ids: list[int]
    book_titles: list[str]
    book_copy_ids: list[int]
    barcodes: list[str]
    total_books: int
    open_count: int
    checkout_date: datetime
    due_date: datetime
    is_batch: bool
    display_title: str
