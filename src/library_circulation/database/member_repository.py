"""
Member repository for the library circulation server.

Member records, self-service lookups (email plus PIN, QR code) and the
open-loan counts the loan engine needs for its eligibility and limit checks.
"""

import secrets

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..errors import HasActiveLoans, MemberNotFound
from ..models.member import Member as MemberModel
from ..models.member import MemberCreate, MemberStatus, MemberUpdate
from .repository import BaseRepository
from .schema import Loan as LoanDB
from .schema import LoanStatusEnum
from .schema import Member as MemberDB
from .session import safe_query


class MemberRepository(BaseRepository[MemberDB, MemberCreate, MemberUpdate, MemberModel]):
    """Repository for library members."""

    not_found_error = MemberNotFound

    def __init__(self, session: Session):
        super().__init__(session)

    @property
    def model_class(self) -> type[MemberDB]:
        return MemberDB

    @property
    def response_schema(self) -> type[MemberModel]:
        return MemberModel

    def lock(self, member_id: int) -> MemberDB:
        return self._require_row(member_id, for_update=True)

    def get_by_email(self, email: str) -> MemberModel | None:
        db_member = self._get_by_email(email)
        return self._to_response_model(db_member) if db_member else None

    def _get_by_email(self, email: str) -> MemberDB | None:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(MemberDB).where(func.lower(MemberDB.email) == email.strip().lower())
            ).scalar_one_or_none(),
            "Failed to look up member by email",
        )

    def get_by_credentials(self, email: str, pin: str) -> MemberModel | None:
        """
        Desk login: the member registered under ``email``, if ``pin`` is theirs.

        PINs are short and shared between members, so they are only ever
        checked against the member the email identifies.
        """
        db_member = self._get_by_email(email)
        if db_member is None or db_member.pin is None:
            return None
        if not secrets.compare_digest(db_member.pin, pin):
            return None
        return self._to_response_model(db_member)

    def get_by_qr_code(self, qr_code: str) -> MemberModel | None:
        db_member = safe_query(
            self.session,
            lambda s: s.execute(
                select(MemberDB).where(MemberDB.qr_code == qr_code)
            ).scalar_one_or_none(),
            "Failed to look up member by QR code",
        )
        return self._to_response_model(db_member) if db_member else None

    def search(self, query: str | None = None, status: MemberStatus | None = None) -> list[MemberModel]:
        stmt = select(MemberDB)
        if query:
            pattern = f"%{query}%"
            stmt = stmt.where(or_(MemberDB.name.ilike(pattern), MemberDB.email.ilike(pattern)))
        if status is not None:
            stmt = stmt.where(MemberDB.status == status)
        stmt = stmt.order_by(MemberDB.name)

        rows = safe_query(self.session, lambda s: s.execute(stmt).scalars().all(), "Member search failed")
        return [self._to_response_model(row) for row in rows]

    def count_open_loans(self, member_id: int) -> int:
        """Loans counting against the member's limit: Borrowed and unreturned."""
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count(LoanDB.id)).where(
                    LoanDB.member_id == member_id,
                    LoanDB.status == LoanStatusEnum.BORROWED,
                    LoanDB.return_date.is_(None),
                )
            ).scalar(),
            f"Failed to count open loans for member {member_id}",
        ) or 0

    def open_loan_ids(self, member_id: int) -> list[int]:
        return list(
            safe_query(
                self.session,
                lambda s: s.execute(
                    select(LoanDB.id)
                    .where(LoanDB.member_id == member_id, LoanDB.return_date.is_(None))
                    .order_by(LoanDB.id)
                ).scalars().all(),
                f"Failed to list open loans for member {member_id}",
            )
        )

    def _check_can_delete(self, db_obj: MemberDB) -> None:
        open_count = len(self.open_loan_ids(db_obj.id))
        if open_count:
            raise HasActiveLoans(
                f"Cannot delete member '{db_obj.name}': they have {open_count} active loans",
                member_id=db_obj.id,
                open_loans=open_count,
            )
