"""
Loan ledger repository for the library circulation server.

This is the read side of the ``loans`` table plus the row-level primitives
the loan engine mutates through:

1. **Lookups**: single loans, existence checks for batches, open loans of a
   transaction group
2. **Listings**: loans joined with copy, book, shelf and member details for
   the desk, filtered by status, member, book or overdue state
3. **Reporting**: overdue and due-soon windows, monthly statistics

Overdue state is never stored; it is computed by comparing ``due_date`` with
the ``now`` the caller passes in, so tests can pin the clock.
"""

import math
from datetime import datetime, timedelta

from sqlalchemy import Select, case, func, select
from sqlalchemy.orm import Session

from ..errors import LoanNotFound
from ..models.loan import Loan as LoanModel
from ..models.loan import (
    CategoryCount,
    LoanDetails,
    LoanStatistics,
    LoanStatus,
    MemberStatistics,
    PopularBook,
)
from .schema import Book as BookDB
from .schema import BookCopy as BookCopyDB
from .schema import Loan as LoanDB
from .schema import Member as MemberDB
from .schema import Shelf as ShelfDB
from .session import safe_query


def days_overdue(due_date: datetime, now: datetime) -> int:
    """Started days past the due date; 0 when not overdue."""
    if now <= due_date:
        return 0
    return math.ceil((now - due_date).total_seconds() / 86400)


def _month_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


class LoanRepository:
    """
    Repository for the loan ledger.

    Unlike the catalog repositories this one has no generic create/update:
    loans only change through the loan engine.
    """

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def to_model(db_loan: LoanDB) -> LoanModel:
        return LoanModel.model_validate(db_loan, from_attributes=True)

    # === Row access for the engine ===

    def lock(self, loan_id: int) -> LoanDB:
        db_loan = safe_query(
            self.session,
            lambda s: s.execute(
                select(LoanDB).where(LoanDB.id == loan_id).with_for_update()
            ).scalar_one_or_none(),
            f"Failed to get loan {loan_id}",
        )
        if db_loan is None:
            raise LoanNotFound(f"Loan with ID {loan_id} not found", loan_id=loan_id)
        return db_loan

    def get(self, loan_id: int) -> LoanModel:
        return self.to_model(self.lock(loan_id))

    def fetch_many(self, loan_ids: list[int]) -> dict[int, LoanDB]:
        """Rows for the given ids; missing ids are simply absent."""
        if not loan_ids:
            return {}
        rows = safe_query(
            self.session,
            lambda s: s.execute(select(LoanDB).where(LoanDB.id.in_(loan_ids))).scalars().all(),
            "Failed to fetch loans",
        )
        return {row.id: row for row in rows}

    def open_loans_in_transaction(self, transaction_id: str) -> list[LoanDB]:
        return list(
            safe_query(
                self.session,
                lambda s: s.execute(
                    select(LoanDB)
                    .where(LoanDB.transaction_id == transaction_id, LoanDB.return_date.is_(None))
                    .order_by(LoanDB.id)
                    .with_for_update()
                ).scalars().all(),
                f"Failed to load transaction {transaction_id}",
            )
        )

    def count_active(self) -> int:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count(LoanDB.id)).where(
                    LoanDB.status == LoanStatus.BORROWED, LoanDB.return_date.is_(None)
                )
            ).scalar(),
            "Failed to count active loans",
        ) or 0

    # === Detailed listings ===

    @staticmethod
    def _details_query() -> Select:
        return (
            select(LoanDB, BookCopyDB, BookDB, MemberDB, ShelfDB.name)
            .join(BookCopyDB, LoanDB.book_copy_id == BookCopyDB.id)
            .join(BookDB, BookCopyDB.book_id == BookDB.id)
            .join(MemberDB, LoanDB.member_id == MemberDB.id)
            .outerjoin(ShelfDB, BookCopyDB.shelf_id == ShelfDB.id)
        )

    @staticmethod
    def _to_details(row, now: datetime) -> LoanDetails:
        loan, copy, book, member, shelf_name = row
        details = LoanDetails.model_validate(loan, from_attributes=True)
        return details.model_copy(
            update={
                "book_id": book.id,
                "book_title": book.title,
                "book_author": book.author,
                "isbn": book.isbn,
                "barcode": copy.barcode,
                "location_code": copy.location_code,
                "copy_status": copy.status.value,
                "shelf_name": shelf_name,
                "member_name": member.name,
                "member_email": member.email,
                "days_overdue": days_overdue(loan.due_date, now) if loan.return_date is None else 0,
            }
        )

    def _run_details(self, query: Select, now: datetime, error_msg: str) -> list[LoanDetails]:
        rows = safe_query(self.session, lambda s: s.execute(query).all(), error_msg)
        return [self._to_details(row, now) for row in rows]

    def get_details(self, loan_id: int, now: datetime) -> LoanDetails:
        details = self._run_details(
            self._details_query().where(LoanDB.id == loan_id), now, f"Failed to get loan {loan_id}"
        )
        if not details:
            raise LoanNotFound(f"Loan with ID {loan_id} not found", loan_id=loan_id)
        return details[0]

    def list_loans(
        self,
        now: datetime,
        status: LoanStatus | None = None,
        member_id: int | None = None,
        book_id: int | None = None,
        overdue_only: bool = False,
        transaction_id: str | None = None,
    ) -> list[LoanDetails]:
        query = self._details_query()
        if status is not None:
            query = query.where(LoanDB.status == status)
        if member_id is not None:
            query = query.where(LoanDB.member_id == member_id)
        if book_id is not None:
            query = query.where(BookDB.id == book_id)
        if transaction_id is not None:
            query = query.where(LoanDB.transaction_id == transaction_id)
        if overdue_only:
            query = query.where(LoanDB.return_date.is_(None), LoanDB.due_date < now)
        query = query.order_by(LoanDB.checkout_date.desc(), LoanDB.id.desc())
        return self._run_details(query, now, "Failed to list loans")

    def get_overdue(self, now: datetime, min_days_overdue: int = 0) -> list[LoanDetails]:
        """Open loans past due, optionally only those at least N days late."""
        query = self._details_query().where(
            LoanDB.status == LoanStatus.BORROWED,
            LoanDB.return_date.is_(None),
            LoanDB.due_date < now,
        )
        if min_days_overdue > 0:
            query = query.where(LoanDB.due_date <= now - timedelta(days=min_days_overdue))
        query = query.order_by(LoanDB.due_date)
        return self._run_details(query, now, "Failed to list overdue loans")

    def get_due_soon(self, now: datetime, days: int) -> list[LoanDetails]:
        """Open loans not yet overdue but due within ``days``."""
        query = (
            self._details_query()
            .where(
                LoanDB.status == LoanStatus.BORROWED,
                LoanDB.return_date.is_(None),
                LoanDB.due_date >= now,
                LoanDB.due_date <= now + timedelta(days=days),
            )
            .order_by(LoanDB.due_date)
        )
        return self._run_details(query, now, "Failed to list loans due soon")

    def get_member_active(self, member_id: int, now: datetime) -> list[LoanDetails]:
        query = (
            self._details_query()
            .where(
                LoanDB.member_id == member_id,
                LoanDB.status == LoanStatus.BORROWED,
                LoanDB.return_date.is_(None),
            )
            .order_by(LoanDB.checkout_date.desc(), LoanDB.id)
        )
        return self._run_details(query, now, f"Failed to list active loans of member {member_id}")

    def get_member_history(self, member_id: int, now: datetime) -> list[LoanDetails]:
        query = (
            self._details_query()
            .where(LoanDB.member_id == member_id, LoanDB.return_date.is_not(None))
            .order_by(LoanDB.return_date.desc(), LoanDB.id.desc())
        )
        return self._run_details(query, now, f"Failed to list loan history of member {member_id}")

    # === Reporting ===

    def statistics(self, now: datetime) -> LoanStatistics:
        month_start, month_end = _month_bounds(now)
        open_clause = (LoanDB.status == LoanStatus.BORROWED, LoanDB.return_date.is_(None))

        def scalar(stmt, error_msg):
            return safe_query(self.session, lambda s: s.execute(stmt).scalar(), error_msg)

        overdue = scalar(
            select(func.count(LoanDB.id)).where(*open_clause, LoanDB.due_date < now),
            "Failed to count overdue loans",
        )
        checkouts = scalar(
            select(func.count(LoanDB.id)).where(
                LoanDB.checkout_date >= month_start, LoanDB.checkout_date < month_end
            ),
            "Failed to count checkouts",
        )
        returns = scalar(
            select(func.count(LoanDB.id)).where(
                LoanDB.return_date >= month_start, LoanDB.return_date < month_end
            ),
            "Failed to count returns",
        )
        fines = scalar(
            select(func.coalesce(func.sum(LoanDB.fine_amount), 0.0)).where(
                LoanDB.fine_amount > 0, LoanDB.fine_paid.is_(False)
            ),
            "Failed to total uncollected fines",
        )

        return LoanStatistics(
            active_loans=self.count_active(),
            overdue_loans=overdue or 0,
            current_month_checkouts=checkouts or 0,
            current_month_returns=returns or 0,
            uncollected_fines=float(fines or 0.0),
        )

    def member_statistics(self, member_id: int, now: datetime) -> MemberStatistics:
        counts = safe_query(
            self.session,
            lambda s: s.execute(
                select(
                    func.count(LoanDB.id),
                    func.count(LoanDB.return_date),
                    func.sum(case((LoanDB.return_date.is_(None), 1), else_=0)),
                    func.sum(case((LoanDB.return_date.is_(None) & (LoanDB.due_date < now), 1), else_=0)),
                ).where(LoanDB.member_id == member_id)
            ).one(),
            f"Failed to compute statistics for member {member_id}",
        )
        total, returned, active, overdue = counts

        borrow_count = func.count(LoanDB.id).label("borrow_count")
        categories = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookDB.category, borrow_count)
                .select_from(LoanDB)
                .join(BookCopyDB, LoanDB.book_copy_id == BookCopyDB.id)
                .join(BookDB, BookCopyDB.book_id == BookDB.id)
                .where(LoanDB.member_id == member_id, BookDB.category.is_not(None))
                .group_by(BookDB.category)
                .order_by(borrow_count.desc(), BookDB.category)
                .limit(3)
            ).all(),
            f"Failed to rank categories for member {member_id}",
        )

        return MemberStatistics(
            member_id=member_id,
            total_loans=total or 0,
            active_loans=active or 0,
            returned_loans=returned or 0,
            overdue_loans=overdue or 0,
            favorite_categories=[
                CategoryCount(category=category, count=count) for category, count in categories
            ],
        )

    def popular_books(self, limit: int) -> list[PopularBook]:
        """Titles ranked by how many loans their copies have ever had."""
        borrow_count = func.count(LoanDB.id).label("borrow_count")
        rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookDB.id, BookDB.title, BookDB.author, borrow_count)
                .select_from(LoanDB)
                .join(BookCopyDB, LoanDB.book_copy_id == BookCopyDB.id)
                .join(BookDB, BookCopyDB.book_id == BookDB.id)
                .group_by(BookDB.id, BookDB.title, BookDB.author)
                .order_by(borrow_count.desc(), BookDB.title)
                .limit(limit)
            ).all(),
            "Failed to rank popular books",
        )
        return [
            PopularBook(book_id=book_id, title=title, author=author, borrow_count=count)
            for book_id, title, author, count in rows
        ]
