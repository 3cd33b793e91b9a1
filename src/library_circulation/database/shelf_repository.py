"""
Shelf repository: physical locations, relocation and capacity reporting.
"""

import logging

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..errors import ShelfNotEmpty, ShelfNotFound, ValidationError
from ..models.shelf import Shelf as ShelfModel
from ..models.shelf import ShelfCapacity, ShelfCreate, ShelfUpdate
from .repository import BaseRepository
from .schema import BookCopy as BookCopyDB
from .schema import Shelf as ShelfDB
from .session import safe_flush, safe_query

logger = logging.getLogger(__name__)

# Shelves created without a capacity are reported against this many slots
DEFAULT_SHELF_CAPACITY = 100


class ShelfRepository(BaseRepository[ShelfDB, ShelfCreate, ShelfUpdate, ShelfModel]):
    not_found_error = ShelfNotFound

    def __init__(self, session: Session):
        super().__init__(session)

    @property
    def model_class(self) -> type[ShelfDB]:
        return ShelfDB

    @property
    def response_schema(self) -> type[ShelfModel]:
        return ShelfModel

    def count_copies(self, shelf_id: int) -> int:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count(BookCopyDB.id)).where(BookCopyDB.shelf_id == shelf_id)
            ).scalar(),
            f"Failed to count copies on shelf {shelf_id}",
        ) or 0

    def _check_can_delete(self, db_obj: ShelfDB) -> None:
        copy_count = self.count_copies(db_obj.id)
        if copy_count:
            raise ShelfNotEmpty(
                f"Cannot delete shelf '{db_obj.name}': {copy_count} book copies are still "
                "assigned to it. Reassign them first.",
                shelf_id=db_obj.id,
                copy_count=copy_count,
            )

    def reassign_copies(self, source_shelf_id: int, target_shelf_id: int) -> int:
        """
        Move every copy on one shelf to another.

        Returns:
            Number of copies moved
        """
        if source_shelf_id == target_shelf_id:
            raise ValidationError("Source and target shelf must differ")
        self._require_row(source_shelf_id)
        self._require_row(target_shelf_id)

        result = self.session.execute(
            update(BookCopyDB)
            .where(BookCopyDB.shelf_id == source_shelf_id)
            .values(shelf_id=target_shelf_id)
            .execution_options(synchronize_session="fetch")
        )
        safe_flush(self.session, "reassign copies")
        logger.info(
            "Reassigned %d copies from shelf %s to shelf %s",
            result.rowcount,
            source_shelf_id,
            target_shelf_id,
        )
        return result.rowcount

    def shelf_capacities(self) -> list[ShelfCapacity]:
        counts = (
            select(BookCopyDB.shelf_id, func.count(BookCopyDB.id).label("copy_count"))
            .group_by(BookCopyDB.shelf_id)
            .subquery()
        )
        rows = safe_query(
            self.session,
            lambda s: s.execute(
                select(ShelfDB, func.coalesce(counts.c.copy_count, 0))
                .outerjoin(counts, counts.c.shelf_id == ShelfDB.id)
                .order_by(ShelfDB.name)
            ).all(),
            "Failed to compute shelf capacities",
        )

        report = []
        for shelf, copy_count in rows:
            capacity = shelf.capacity or DEFAULT_SHELF_CAPACITY
            report.append(
                ShelfCapacity(
                    shelf_id=shelf.id,
                    name=shelf.name,
                    section=shelf.section,
                    capacity=capacity,
                    copy_count=copy_count,
                    usage_percent=round(copy_count * 100.0 / capacity, 1),
                    is_over_capacity=copy_count > capacity,
                )
            )
        return report
