"""
Book repository for the library circulation server.

Catalog records plus two questions the loan desk asks about a title: how
many of its copies can be lent right now, and whether it can be removed.
"""

import logging

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from ..errors import BookNotFound, HasActiveLoan
from ..models.book import Book as BookModel
from ..models.book import BookAvailability, BookCreate, BookUpdate, CategoryPopularity, CopyStatus
from .repository import BaseRepository
from .schema import Book as BookDB
from .schema import BookCopy as BookCopyDB
from .schema import Loan as LoanDB
from .session import safe_flush, safe_query

logger = logging.getLogger(__name__)


class BookRepository(BaseRepository[BookDB, BookCreate, BookUpdate, BookModel]):
    """Repository for catalog records."""

    not_found_error = BookNotFound

    def __init__(self, session: Session):
        super().__init__(session)

    @property
    def model_class(self) -> type[BookDB]:
        return BookDB

    @property
    def response_schema(self) -> type[BookModel]:
        return BookModel

    def get_by_isbn(self, isbn: str) -> BookModel | None:
        cleaned = isbn.replace("-", "").replace(" ", "").upper()
        db_book = safe_query(
            self.session,
            lambda s: s.execute(select(BookDB).where(BookDB.isbn == cleaned)).scalar_one_or_none(),
            f"Failed to get book by ISBN {isbn}",
        )
        return self._to_response_model(db_book) if db_book else None

    def search(self, query: str | None = None, category: str | None = None) -> list[BookModel]:
        """Case-insensitive match on title, author or ISBN."""
        stmt = select(BookDB)
        if query:
            pattern = f"%{query}%"
            stmt = stmt.where(
                or_(
                    BookDB.title.ilike(pattern),
                    BookDB.author.ilike(pattern),
                    BookDB.isbn.ilike(pattern),
                )
            )
        if category:
            stmt = stmt.where(BookDB.category == category)
        stmt = stmt.order_by(BookDB.title)

        rows = safe_query(self.session, lambda s: s.execute(stmt).scalars().all(), "Book search failed")
        return [self._to_response_model(row) for row in rows]

    def availability(self, book_id: int) -> BookAvailability:
        db_book = self._require_row(book_id)
        rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookCopyDB.status, func.count(BookCopyDB.id))
                .where(BookCopyDB.book_id == book_id)
                .group_by(BookCopyDB.status)
            ).all(),
            f"Failed to compute availability for book {book_id}",
        )
        counts = {status: count for status, count in rows}

        return BookAvailability(
            book_id=db_book.id,
            title=db_book.title,
            total_copies=sum(counts.values()),
            available_copies=counts.get(CopyStatus.AVAILABLE, 0),
            checked_out_copies=counts.get(CopyStatus.CHECKED_OUT, 0),
            damaged_copies=counts.get(CopyStatus.DAMAGED, 0),
            lost_copies=counts.get(CopyStatus.LOST, 0),
            maintenance_copies=counts.get(CopyStatus.MAINTENANCE, 0),
        )

    def _check_can_delete(self, db_obj: BookDB) -> None:
        copy_ids = select(BookCopyDB.id).where(BookCopyDB.book_id == db_obj.id)

        open_loans = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count(LoanDB.id)).where(
                    LoanDB.book_copy_id.in_(copy_ids), LoanDB.return_date.is_(None)
                )
            ).scalar(),
            f"Failed to check open loans for book {db_obj.id}",
        )
        if open_loans:
            raise HasActiveLoan(
                f"Cannot delete book '{db_obj.title}': {open_loans} of its copies are "
                "currently on loan",
                book_id=db_obj.id,
                open_loans=open_loans,
            )

    def delete(self, id: int) -> None:
        """Delete a book, its copies and their closed loans."""
        db_book = self._require_row(id, for_update=True)
        self._check_can_delete(db_book)

        self.session.execute(
            delete(BookCopyDB)
            .where(BookCopyDB.book_id == id)
            .execution_options(synchronize_session="fetch")
        )
        self.session.delete(db_book)
        safe_flush(self.session, "delete Book")
        logger.info("Deleted book %s", id)

    def popular_categories(self, limit: int = 5) -> list[CategoryPopularity]:
        """Categories ranked by how many titles the catalog holds in them."""
        book_count = func.count(BookDB.id).label("book_count")
        rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookDB.category, book_count)
                .where(BookDB.category.is_not(None))
                .group_by(BookDB.category)
                .order_by(book_count.desc(), BookDB.category)
                .limit(limit)
            ).all(),
            "Failed to rank categories",
        )
        return [CategoryPopularity(category=category, book_count=count) for category, count in rows]
