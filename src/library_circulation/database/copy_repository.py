"""
Book copy repository for the library circulation server.

Owns ``book_copies.status`` and shelf assignment. Two kinds of callers:

- Inventory management (HTTP): create, move, change status, delete. These
  refuse to touch a copy that is on loan and never set Checked Out.
- The loan engine: ``claim_for_loan`` / ``release_from_loan`` move a copy in
  and out of Checked Out inside the engine's transaction.
"""

import logging

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..errors import (
    BookNotFound,
    CopyNotFound,
    HasActiveLoan,
    ShelfNotFound,
    ValidationError,
)
from ..models.book import BookCopy as BookCopyModel
from ..models.book import BookCopyCreate, CopyStatus
from .repository import BaseRepository
from .schema import Book as BookDB
from .schema import BookCopy as BookCopyDB
from .schema import Loan as LoanDB
from .schema import Member as MemberDB
from .schema import Shelf as ShelfDB
from .session import safe_flush, safe_query

logger = logging.getLogger(__name__)


class CopyRepository(BaseRepository[BookCopyDB, BookCopyCreate, BaseModel, BookCopyModel]):
    """Repository for physical copies."""

    not_found_error = CopyNotFound

    def __init__(self, session: Session):
        super().__init__(session)

    @property
    def model_class(self) -> type[BookCopyDB]:
        return BookCopyDB

    @property
    def response_schema(self) -> type[BookCopyModel]:
        return BookCopyModel

    @property
    def entity_name(self) -> str:
        return "Book copy"

    def create(self, data: BookCopyCreate) -> BookCopyModel:
        if self.session.get(BookDB, data.book_id) is None:
            raise BookNotFound(f"Book with ID {data.book_id} not found", id=data.book_id)
        if data.shelf_id is not None and self.session.get(ShelfDB, data.shelf_id) is None:
            raise ShelfNotFound(f"Shelf with ID {data.shelf_id} not found", id=data.shelf_id)
        return super().create(data)

    def get_by_barcode(self, barcode: str) -> BookCopyModel | None:
        db_copy = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookCopyDB).where(BookCopyDB.barcode == barcode)
            ).scalar_one_or_none(),
            f"Failed to get copy by barcode {barcode}",
        )
        return self._to_response_model(db_copy) if db_copy else None

    def list_copies(
        self,
        book_id: int | None = None,
        shelf_id: int | None = None,
        status: CopyStatus | None = None,
    ) -> list[BookCopyModel]:
        query = select(BookCopyDB)
        if book_id is not None:
            query = query.where(BookCopyDB.book_id == book_id)
        if shelf_id is not None:
            query = query.where(BookCopyDB.shelf_id == shelf_id)
        if status is not None:
            query = query.where(BookCopyDB.status == status)
        query = query.order_by(BookCopyDB.id)

        rows = safe_query(
            self.session, lambda s: s.execute(query).scalars().all(), "Failed to list copies"
        )
        return [self._to_response_model(row) for row in rows]

    # === Loan queries ===

    def open_loan_for(self, copy_id: int) -> tuple[LoanDB, MemberDB] | None:
        """The open loan holding this copy, joined with its borrower."""
        row = safe_query(
            self.session,
            lambda s: s.execute(
                select(LoanDB, MemberDB)
                .join(MemberDB, LoanDB.member_id == MemberDB.id)
                .where(LoanDB.book_copy_id == copy_id, LoanDB.return_date.is_(None))
                .order_by(LoanDB.id.desc())
                .limit(1)
            ).first(),
            f"Failed to look up open loan for copy {copy_id}",
        )
        return (row[0], row[1]) if row else None

    # === Inventory management ===

    def set_status(self, copy_id: int, status: CopyStatus) -> BookCopyModel:
        """
        Change a copy's status outside the loan flow (damage, maintenance...).

        Raises:
            ValidationError: If asked to set Checked Out directly
            HasActiveLoan: If the copy is currently on loan
        """
        if status == CopyStatus.CHECKED_OUT:
            raise ValidationError(
                "Copies can only be marked Checked Out by a checkout", copy_id=copy_id
            )

        db_copy = self._require_row(copy_id, for_update=True)
        if db_copy.status == CopyStatus.CHECKED_OUT or self.open_loan_for(copy_id):
            raise HasActiveLoan(
                f"Book copy {copy_id} is on loan; return it before changing its status",
                copy_id=copy_id,
            )

        db_copy.status = status
        safe_flush(self.session, "set copy status")
        logger.info("Copy %s status set to %s", copy_id, status.value)
        return self._to_response_model(db_copy)

    def move_copy(self, copy_id: int, shelf_id: int | None) -> BookCopyModel:
        db_copy = self._require_row(copy_id, for_update=True)
        if shelf_id is not None and self.session.get(ShelfDB, shelf_id) is None:
            raise ShelfNotFound(f"Shelf with ID {shelf_id} not found", id=shelf_id)

        db_copy.shelf_id = shelf_id
        safe_flush(self.session, "move copy")
        return self._to_response_model(db_copy)

    def _check_can_delete(self, db_obj: BookCopyDB) -> None:
        if self.open_loan_for(db_obj.id):
            raise HasActiveLoan(
                f"Cannot delete book copy {db_obj.id}: it is currently on loan",
                copy_id=db_obj.id,
            )

    # === Loan engine primitives ===

    def lock(self, copy_id: int) -> BookCopyDB:
        """Re-read a copy inside the caller's transaction."""
        return self._require_row(copy_id, for_update=True)

    def claim_for_loan(self, copy_id: int) -> bool:
        """
        Flip an Available copy to Checked Out.

        Returns False when the copy was no longer Available at write time,
        meaning another transaction claimed it first.
        """
        result = self.session.execute(
            update(BookCopyDB)
            .where(BookCopyDB.id == copy_id, BookCopyDB.status == CopyStatus.AVAILABLE)
            .values(status=CopyStatus.CHECKED_OUT)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def release_from_loan(self, copy_id: int, status: CopyStatus) -> None:
        """Set the status a copy takes when its loan closes."""
        self.session.execute(
            update(BookCopyDB)
            .where(BookCopyDB.id == copy_id)
            .values(status=status)
            .execution_options(synchronize_session="fetch")
        )
