"""
Loan engine for the library circulation server.

Every operation that moves a copy in or out of circulation lives here:

1. **Checkout**: one shared transaction id per call, one atomic database
   transaction per copy, per-copy failures collected
2. **Returns**: single (with transaction-group expansion), batch and
   QR-keyed, computing fines once
3. **Renewal, fine payment, loss, notes**
4. **Ledger queries** that depend on "now": overdue, due soon, statistics,
   transaction groups

Each mutation runs inside one ``DatabaseManager.session_scope()``: the loan
row and the copy status change commit together or not at all. Business
rules are checked before anything is written and raise ``LibraryError``
subclasses; the scope rolls back on any exception.

The clock is injectable so fines and overdue windows can be tested against
fixed dates.
"""

import logging
import random
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from ..config import LoanPolicy, QRMemberMismatchPolicy
from ..database.copy_repository import CopyRepository
from ..database.loan_repository import LoanRepository, days_overdue
from ..database.member_repository import MemberRepository
from ..database.schema import Loan as LoanDB
from ..database.session import DatabaseManager, safe_flush
from ..errors import (
    AlreadyOverdue,
    AlreadyPaid,
    AlreadyReturned,
    CopyUnavailable,
    InsufficientPayment,
    InvalidLoanIds,
    LibraryError,
    LoanLimitExceeded,
    LoanNotFound,
    MemberLoanMismatch,
    MemberNotEligible,
    MemberNotFound,
    NoFineDue,
    NoMatchingLoans,
    RenewalLimitExceeded,
    StorageError,
    ValidationError,
)
from ..models.book import CopyStatus
from ..models.loan import (
    BatchReturnResult,
    CheckoutFailure,
    CheckoutResult,
    Loan,
    LoanDetails,
    LoanStatistics,
    LoanStatus,
    MemberStatistics,
    PopularBook,
    QRReturnRequest,
    QRReturnResult,
    ReturnCondition,
    ReturnFailure,
    ReturnItem,
    ReturnResult,
    TransactionGroup,
)
from ..observability import record_circulation_event, trace_operation
from .transactions import group_loans

logger = logging.getLogger(__name__)

_COPY_STATUS_ON_RETURN = {
    ReturnCondition.GOOD: CopyStatus.AVAILABLE,
    ReturnCondition.DAMAGED: CopyStatus.DAMAGED,
    ReturnCondition.LOST: CopyStatus.LOST,
}


def generate_transaction_id(member_id: int) -> str:
    """``LOAN-<epoch ms>-<member id>-<4 random digits>``."""
    return f"LOAN-{int(time.time() * 1000)}-{member_id}-{random.randint(0, 9999):04d}"


def _append_note(existing: str | None, note: str | None) -> str | None:
    if not note:
        return existing
    return f"{existing}\n{note}" if existing else note


def _as_condition(condition: ReturnCondition | str) -> ReturnCondition:
    if isinstance(condition, ReturnCondition):
        return condition
    try:
        return ReturnCondition(condition)
    except ValueError as e:
        raise ValidationError(f"Unknown return condition: {condition!r}") from e


class LoanEngine:
    """
    Orchestrates the loan lifecycle against one database.

    Args:
        db: An open ``DatabaseManager``
        policy: Loan limits and fine rates
        clock: Returns the current local time; ``datetime.now`` by default
    """

    def __init__(
        self,
        db: DatabaseManager,
        policy: LoanPolicy | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.policy = policy or LoanPolicy()
        self.clock = clock

    def now(self) -> datetime:
        return self.clock()

    # === Fines ===

    def compute_fine(
        self, due_date: datetime, returned_at: datetime, condition: ReturnCondition
    ) -> float:
        """Overdue fine per started day plus the flat damaged/lost charge."""
        fine = days_overdue(due_date, returned_at) * self.policy.overdue_fine_per_day
        if condition == ReturnCondition.DAMAGED:
            fine += self.policy.damaged_fine
        elif condition == ReturnCondition.LOST:
            fine += self.policy.lost_fine
        return float(fine)

    # === Checkout ===

    def checkout(
        self, member_id: int, copy_ids: list[int], duration_days: int | None = None
    ) -> CheckoutResult:
        """
        Check out one or more copies for a member.

        Each copy is attempted independently in its own transaction; all
        successful loans share one transaction id. A missing or inactive
        member fails the whole call before any copy is attempted.

        Raises:
            ValidationError: Empty copy list or bad duration
            MemberNotFound, MemberNotEligible: Member cannot borrow at all
        """
        if not copy_ids:
            raise ValidationError("At least one book copy ID is required")
        duration = self._loan_duration(duration_days)

        with trace_operation("loan_engine", "checkout", member_id=member_id, copies=len(copy_ids)):
            with self.db.read_scope() as session:
                self._require_eligible_member(MemberRepository(session), member_id)

            transaction_id = generate_transaction_id(member_id)
            result = CheckoutResult(transaction_id=transaction_id, member_id=member_id)

            for copy_id in dict.fromkeys(copy_ids):
                try:
                    loan = self.checkout_copy(member_id, copy_id, duration, transaction_id)
                except StorageError:
                    raise
                except LibraryError as e:
                    logger.info("Checkout of copy %s for member %s refused: %s", copy_id, member_id, e)
                    result.errors.append(
                        CheckoutFailure(book_copy_id=copy_id, error=e.message, kind=e.kind.value)
                    )
                else:
                    result.loans.append(loan)

            record_circulation_event("checkout", count=len(result.loans))
            logger.info(
                "Checkout %s for member %s: %d loaned, %d refused",
                transaction_id,
                member_id,
                len(result.loans),
                len(result.errors),
            )
            return result

    def checkout_copy(
        self,
        member_id: int,
        copy_id: int,
        duration_days: int | None = None,
        transaction_id: str | None = None,
    ) -> Loan:
        """
        Atomically lend one copy: insert the loan and flip the copy to
        Checked Out, or do neither.

        Raises:
            MemberNotFound, MemberNotEligible, LoanLimitExceeded,
            CopyNotFound, CopyUnavailable
        """
        duration = self._loan_duration(duration_days)
        transaction_id = transaction_id or generate_transaction_id(member_id)

        with self.db.session_scope() as session:
            members = MemberRepository(session)
            copies = CopyRepository(session)

            self._require_eligible_member(members, member_id)
            open_count = members.count_open_loans(member_id)
            if open_count >= self.policy.max_open_loans:
                raise LoanLimitExceeded(
                    f"Member has reached the maximum number of loans ({self.policy.max_open_loans})",
                    member_id=member_id,
                    open_loans=open_count,
                )

            db_copy = copies.lock(copy_id)
            if db_copy.status != CopyStatus.AVAILABLE:
                raise self._unavailable(copies, copy_id, db_copy.status)

            now = self.now()
            db_loan = LoanDB(
                book_copy_id=copy_id,
                member_id=member_id,
                transaction_id=transaction_id,
                checkout_date=now,
                due_date=now + timedelta(days=duration),
                status=LoanStatus.BORROWED,
                fine_amount=0.0,
                fine_paid=False,
                renewal_count=0,
            )
            if not copies.claim_for_loan(copy_id):
                raise CopyUnavailable(
                    f"Book copy {copy_id} was checked out by another request", copy_id=copy_id
                )
            session.add(db_loan)
            safe_flush(session, "checkout")
            return LoanRepository.to_model(db_loan)

    def _loan_duration(self, duration_days: int | None) -> int:
        if duration_days is None:
            return self.policy.default_loan_days
        if duration_days < 1:
            raise ValidationError("Loan duration must be at least one day")
        return duration_days

    @staticmethod
    def _require_eligible_member(members: MemberRepository, member_id: int) -> None:
        db_member = members.lock(member_id)
        if not db_member.is_active:
            raise MemberNotEligible(
                f"Member {db_member.name} is not active and cannot borrow books",
                member_id=member_id,
                status=db_member.status.value,
            )

    @staticmethod
    def _unavailable(copies: CopyRepository, copy_id: int, status: CopyStatus) -> CopyUnavailable:
        if status == CopyStatus.CHECKED_OUT:
            holder = copies.open_loan_for(copy_id)
            if holder:
                loan, member = holder
                return CopyUnavailable(
                    f"Book copy {copy_id} is already checked out by {member.name} "
                    f"(due {loan.due_date:%Y-%m-%d})",
                    copy_id=copy_id,
                    holder_member_id=member.id,
                    due_date=loan.due_date.isoformat(),
                )
        return CopyUnavailable(
            f"Book copy {copy_id} is not available (status: {status.value})",
            copy_id=copy_id,
            status=status.value,
        )

    # === Returns ===

    def _close_loan(
        self,
        session: Session,
        db_loan: LoanDB,
        condition: ReturnCondition,
        note: str | None,
        now: datetime,
        status: LoanStatus = LoanStatus.RETURNED,
    ) -> LoanDB:
        db_loan.fine_amount = self.compute_fine(db_loan.due_date, now, condition)
        db_loan.fine_paid = False
        db_loan.return_date = now
        db_loan.status = status
        db_loan.return_condition = condition
        db_loan.notes = _append_note(db_loan.notes, note)

        CopyRepository(session).release_from_loan(
            db_loan.book_copy_id, _COPY_STATUS_ON_RETURN[condition]
        )
        safe_flush(session, "return loan")
        return db_loan

    def _return_in_session(
        self,
        session: Session,
        loan_id: int,
        condition: ReturnCondition,
        note: str | None,
        expand_group: bool,
    ) -> list[LoanDB]:
        loans = LoanRepository(session)
        db_loan = loans.lock(loan_id)
        if db_loan.return_date is not None:
            raise AlreadyReturned(f"Loan {loan_id} has already been returned", loan_id=loan_id)

        now = self.now()
        closed = [self._close_loan(session, db_loan, condition, note, now)]

        if expand_group and db_loan.transaction_id:
            for other in loans.open_loans_in_transaction(db_loan.transaction_id):
                closed.append(self._close_loan(session, other, ReturnCondition.GOOD, None, now))
            if len(closed) > 1:
                logger.info(
                    "Loan %s returned with %d other loans of transaction %s",
                    loan_id,
                    len(closed) - 1,
                    db_loan.transaction_id,
                )
        return closed

    def return_loan(
        self,
        loan_id: int,
        condition: ReturnCondition | str = ReturnCondition.GOOD,
        note: str | None = None,
    ) -> ReturnResult:
        """
        Return a loan and every other open loan of its transaction group.

        The named loan takes ``condition`` and ``note``; the rest of the group
        is returned in Good condition.

        Raises:
            LoanNotFound, AlreadyReturned
        """
        condition = _as_condition(condition)
        with trace_operation("loan_engine", "return", loan_id=loan_id, condition=condition.value):
            with self.db.session_scope() as session:
                closed = self._return_in_session(session, loan_id, condition, note, expand_group=True)
                returned = [LoanRepository.to_model(row) for row in closed]

            result = ReturnResult(
                loan=returned[0], returned=returned, transaction_id=returned[0].transaction_id
            )
            record_circulation_event("return", count=len(returned), fine=result.total_fine)
            logger.info(
                "Returned loan %s (%d loans closed, fine %.2f)", loan_id, len(returned), result.total_fine
            )
            return result

    def return_loans(self, items: list[ReturnItem]) -> BatchReturnResult:
        """
        Return several loans, collecting per-loan failures.

        Every id must exist before anything is written. The first loan's
        transaction group is expanded; loans closed by that expansion are
        skipped when reached later in the list.

        Raises:
            ValidationError: Empty list
            InvalidLoanIds: Some ids do not exist
        """
        if not items:
            raise ValidationError("No return items provided")

        with trace_operation("loan_engine", "return_batch", items=len(items)):
            requested = [item.loan_id for item in items]
            with self.db.read_scope() as session:
                found = LoanRepository(session).fetch_many(requested)
            missing = [loan_id for loan_id in dict.fromkeys(requested) if loan_id not in found]
            if missing:
                raise InvalidLoanIds(missing)

            result = BatchReturnResult()
            closed_ids: set[int] = set()

            for index, item in enumerate(items):
                if item.loan_id in closed_ids:
                    continue
                try:
                    with self.db.session_scope() as session:
                        closed = self._return_in_session(
                            session, item.loan_id, item.condition, item.note, expand_group=index == 0
                        )
                        returned = [LoanRepository.to_model(row) for row in closed]
                except StorageError:
                    raise
                except LibraryError as e:
                    result.errors.append(
                        ReturnFailure(loan_id=item.loan_id, error=e.message, kind=e.kind.value)
                    )
                else:
                    result.returned.extend(returned)
                    closed_ids.update(loan.id for loan in returned)

            record_circulation_event(
                "return",
                count=len(result.returned),
                fine=sum(loan.fine_amount for loan in result.returned),
            )
            logger.info(
                "Batch return: %d returned, %d failed", len(result.returned), len(result.errors)
            )
            return result

    def return_via_qr(self, request: QRReturnRequest) -> QRReturnResult:
        """
        Return the loans named by a scanned QR code.

        Loans belonging to another member than ``request.member_id`` are
        dropped. When none belong to that member the configured
        ``qr_member_mismatch`` policy decides between proceeding with all of
        them and refusing. Already-returned loans are skipped, and a code whose
        loans are all closed succeeds with ``already_returned``.

        Raises:
            NoMatchingLoans: None of the ids exist
            MemberLoanMismatch: Ownership mismatch under the reject policy
        """
        with trace_operation("loan_engine", "return_via_qr", loans=len(request.loan_ids)):
            with self.db.session_scope() as session:
                loans = LoanRepository(session)
                found = loans.fetch_many(request.loan_ids)

                if not found:
                    member_open = None
                    if request.member_id is not None:
                        member_open = MemberRepository(session).open_loan_ids(request.member_id)
                    raise NoMatchingLoans(
                        request.loan_ids,
                        total_active_loans=loans.count_active(),
                        member_id=request.member_id,
                        member_open_loan_ids=member_open,
                    )

                candidates = [found[loan_id] for loan_id in request.loan_ids if loan_id in found]
                dropped_ids: list[int] = []

                if request.member_id is not None and not request.skip_member_check:
                    owned = [row for row in candidates if row.member_id == request.member_id]
                    if owned:
                        dropped_ids = [row.id for row in candidates if row.member_id != request.member_id]
                        if dropped_ids:
                            logger.warning(
                                "QR return: dropping loans %s not belonging to member %s",
                                dropped_ids,
                                request.member_id,
                            )
                        candidates = owned
                    elif self.policy.qr_member_mismatch == QRMemberMismatchPolicy.REJECT:
                        raise MemberLoanMismatch(
                            f"None of the scanned loans belong to member {request.member_id}",
                            member_id=request.member_id,
                            loan_ids=[row.id for row in candidates],
                        )
                    else:
                        logger.warning(
                            "QR return: none of loans %s belong to member %s; returning them anyway",
                            [row.id for row in candidates],
                            request.member_id,
                        )

                open_rows = [row for row in candidates if row.return_date is None]
                skipped_ids = [row.id for row in candidates if row.return_date is not None]

                if not open_rows:
                    return QRReturnResult(
                        count=0,
                        already_returned=True,
                        skipped_ids=skipped_ids,
                        dropped_ids=dropped_ids,
                        transaction_id=request.transaction_id,
                        message="All books in this QR code have already been returned",
                    )

                now = self.now()
                closed = [
                    self._close_loan(session, row, ReturnCondition.GOOD, None, now) for row in open_rows
                ]
                returned = [LoanRepository.to_model(row) for row in closed]

            record_circulation_event(
                "return_qr", count=len(returned), fine=sum(loan.fine_amount for loan in returned)
            )
            logger.info("QR return: %d loans returned, %d skipped", len(returned), len(skipped_ids))
            return QRReturnResult(
                count=len(returned),
                returned=returned,
                skipped_ids=skipped_ids,
                dropped_ids=dropped_ids,
                transaction_id=request.transaction_id,
                message=f"Successfully returned {len(returned)} book(s)",
            )

    # === Renewal, fines, loss, notes ===

    def renew(self, loan_id: int, extension_days: int | None = None) -> Loan:
        """
        Push the due date back.

        Raises:
            ValidationError, LoanNotFound, AlreadyReturned, AlreadyOverdue,
            RenewalLimitExceeded
        """
        if extension_days is None:
            extension_days = self.policy.default_renewal_days
        if extension_days < 1:
            raise ValidationError("Extension must be at least one day")

        with trace_operation("loan_engine", "renew", loan_id=loan_id):
            with self.db.session_scope() as session:
                db_loan = LoanRepository(session).lock(loan_id)
                if db_loan.return_date is not None:
                    raise AlreadyReturned(
                        f"Loan {loan_id} has already been returned and cannot be renewed",
                        loan_id=loan_id,
                    )
                if self.now() > db_loan.due_date:
                    raise AlreadyOverdue(
                        f"Loan {loan_id} is overdue and cannot be renewed", loan_id=loan_id
                    )
                if db_loan.renewal_count >= self.policy.max_renewals:
                    raise RenewalLimitExceeded(
                        f"Maximum renewals ({self.policy.max_renewals}) reached for loan {loan_id}",
                        loan_id=loan_id,
                    )

                db_loan.due_date = db_loan.due_date + timedelta(days=extension_days)
                db_loan.renewal_count += 1
                safe_flush(session, "renew loan")
                loan = LoanRepository.to_model(db_loan)

            record_circulation_event("renew")
            logger.info("Renewed loan %s until %s", loan_id, loan.due_date)
            return loan

    def pay_fine(self, loan_id: int, amount: float) -> Loan:
        """
        Record payment of a loan's fine in full.

        Raises:
            ValidationError, LoanNotFound, NoFineDue, AlreadyPaid,
            InsufficientPayment
        """
        if amount is None or amount <= 0:
            raise ValidationError("Payment amount must be positive")

        with trace_operation("loan_engine", "pay_fine", loan_id=loan_id):
            with self.db.session_scope() as session:
                db_loan = LoanRepository(session).lock(loan_id)
                if not db_loan.fine_amount or db_loan.fine_amount <= 0:
                    raise NoFineDue(f"No fine is due on loan {loan_id}", loan_id=loan_id)
                if db_loan.fine_paid:
                    raise AlreadyPaid(f"The fine on loan {loan_id} is already paid", loan_id=loan_id)
                if amount < db_loan.fine_amount:
                    raise InsufficientPayment(
                        f"Payment amount ({amount:.2f}) is less than the fine "
                        f"amount ({db_loan.fine_amount:.2f})",
                        loan_id=loan_id,
                        fine_amount=db_loan.fine_amount,
                    )

                db_loan.fine_paid = True
                db_loan.fine_paid_date = self.now()
                safe_flush(session, "pay fine")
                loan = LoanRepository.to_model(db_loan)

            logger.info("Fine of %.2f paid on loan %s", loan.fine_amount, loan_id)
            return loan

    def mark_lost(self, loan_id: int, note: str | None = None) -> Loan:
        """Close an open loan as Lost, charging the lost fine and any overdue fine."""
        with trace_operation("loan_engine", "mark_lost", loan_id=loan_id):
            with self.db.session_scope() as session:
                db_loan = LoanRepository(session).lock(loan_id)
                if db_loan.return_date is not None:
                    raise AlreadyReturned(f"Loan {loan_id} is already closed", loan_id=loan_id)
                self._close_loan(
                    session, db_loan, ReturnCondition.LOST, note, self.now(), status=LoanStatus.LOST
                )
                loan = LoanRepository.to_model(db_loan)

            record_circulation_event("lost", fine=loan.fine_amount)
            logger.warning("Loan %s marked lost (fine %.2f)", loan_id, loan.fine_amount)
            return loan

    def add_note(self, loan_id: int, note: str) -> Loan:
        if not note or not note.strip():
            raise ValidationError("Note cannot be empty")

        with self.db.session_scope() as session:
            db_loan = LoanRepository(session).lock(loan_id)
            db_loan.notes = _append_note(db_loan.notes, note.strip())
            safe_flush(session, "add note")
            return LoanRepository.to_model(db_loan)

    # === Ledger queries ===

    def list_loans(
        self,
        status: LoanStatus | None = None,
        member_id: int | None = None,
        book_id: int | None = None,
        overdue_only: bool = False,
    ) -> list[LoanDetails]:
        with self.db.read_scope() as session:
            return LoanRepository(session).list_loans(
                self.now(),
                status=status,
                member_id=member_id,
                book_id=book_id,
                overdue_only=overdue_only,
            )

    def get_loan_details(self, loan_id: int) -> LoanDetails:
        with self.db.read_scope() as session:
            return LoanRepository(session).get_details(loan_id, self.now())

    def get_overdue(self, days_overdue: int = 0) -> list[LoanDetails]:
        if days_overdue < 0:
            raise ValidationError("daysOverdue cannot be negative")
        with self.db.read_scope() as session:
            return LoanRepository(session).get_overdue(self.now(), days_overdue)

    def get_due_soon(self, days: int | None = None) -> list[LoanDetails]:
        days = self.policy.due_soon_days if days is None else days
        if days < 0:
            raise ValidationError("days cannot be negative")
        with self.db.read_scope() as session:
            return LoanRepository(session).get_due_soon(self.now(), days)

    def _require_member(self, session: Session, member_id: int) -> None:
        if not MemberRepository(session).exists(member_id):
            raise MemberNotFound(f"Member with ID {member_id} not found", id=member_id)

    def get_member_loans(self, member_id: int) -> list[LoanDetails]:
        with self.db.read_scope() as session:
            self._require_member(session, member_id)
            return LoanRepository(session).list_loans(self.now(), member_id=member_id)

    def get_member_active_loans(self, member_id: int) -> list[LoanDetails]:
        with self.db.read_scope() as session:
            self._require_member(session, member_id)
            return LoanRepository(session).get_member_active(member_id, self.now())

    def get_member_history(self, member_id: int) -> list[LoanDetails]:
        with self.db.read_scope() as session:
            self._require_member(session, member_id)
            return LoanRepository(session).get_member_history(member_id, self.now())

    def get_returnable_books(self, member_id: int) -> list[TransactionGroup]:
        """A member's open loans grouped the way they were borrowed."""
        return group_loans(self.get_member_active_loans(member_id))

    def get_statistics(self) -> LoanStatistics:
        with self.db.read_scope() as session:
            return LoanRepository(session).statistics(self.now())

    def get_member_statistics(self, member_id: int) -> MemberStatistics:
        with self.db.read_scope() as session:
            self._require_member(session, member_id)
            return LoanRepository(session).member_statistics(member_id, self.now())

    def get_popular_books(self, limit: int = 5) -> list[PopularBook]:
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        with self.db.read_scope() as session:
            return LoanRepository(session).popular_books(limit)

    def list_transaction_groups(
        self, member_id: int | None = None, open_only: bool = False
    ) -> list[TransactionGroup]:
        with self.db.read_scope() as session:
            loans = LoanRepository(session).list_loans(self.now(), member_id=member_id)
        groups = group_loans(loans)
        if open_only:
            groups = [group for group in groups if group.open_count]
        return groups

    def get_transaction(self, transaction_id: str) -> TransactionGroup:
        with self.db.read_scope() as session:
            loans = LoanRepository(session).list_loans(self.now(), transaction_id=transaction_id)
        if not loans:
            raise LoanNotFound(
                f"No loans found for transaction {transaction_id}", transaction_id=transaction_id
            )
        return group_loans(loans)[0]
