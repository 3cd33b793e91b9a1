"""
SQLAlchemy database schema for the library circulation server.

Six tables: the catalog (books, shelves, book_copies), people (members,
users) and the loan ledger (loans). ``book_copies.status`` is the single
source of truth for whether a copy can be lent; the loan engine keeps it in
step with the open rows of ``loans``.

``loans.transaction_id`` is a plain nullable string, deliberately not
unique: all loans created by one checkout call share it.
"""

import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship, validates
from sqlalchemy.sql import func

Base = declarative_base()


def _enum_column(enum_cls: type[enum.Enum], length: int = 20) -> Enum:
    # Persist the human-readable value ("Checked Out"), not the member name
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        validate_strings=True,
        length=length,
    )


class CopyStatusEnum(str, enum.Enum):
    """Loanability state of a physical copy."""

    AVAILABLE = "Available"
    CHECKED_OUT = "Checked Out"
    DAMAGED = "Damaged"
    LOST = "Lost"
    MAINTENANCE = "Maintenance"


class LoanStatusEnum(str, enum.Enum):
    """Lifecycle state of a loan."""

    BORROWED = "Borrowed"
    RETURNED = "Returned"
    LOST = "Lost"


class ReturnConditionEnum(str, enum.Enum):
    """Condition reported when a copy comes back."""

    GOOD = "Good"
    DAMAGED = "Damaged"
    LOST = "Lost"


class MemberStatusEnum(str, enum.Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class UserRoleEnum(str, enum.Enum):
    ADMIN = "admin"
    STAFF = "staff"
    MEMBER_PROXY = "member-proxy"


class UserStatusEnum(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Book(Base):
    """
    Books table - the bibliographic record shared by every physical copy.

    Descriptive fields may change at any time; a book cannot be deleted while
    any of its copies is on loan.
    """

    __tablename__ = "books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(500), nullable=False, index=True)
    author = Column(String(300), nullable=True)
    isbn = Column(String(20), nullable=True, unique=True)
    publisher = Column(String(300), nullable=True)
    publication_year = Column(String(10), nullable=True)
    category = Column(String(100), nullable=True, index=True)
    description = Column(Text, nullable=True)
    language = Column(String(50), nullable=False, default="English")
    pages = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    copies = relationship("BookCopy", back_populates="book")

    __table_args__ = (
        Index("idx_book_author", "author"),
        CheckConstraint("pages IS NULL OR pages > 0", name="check_pages_positive"),
    )


class Shelf(Base):
    """
    Shelves table - physical locations copies are assigned to.

    ``capacity`` is advisory and only used for reporting.
    """

    __tablename__ = "shelves"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    section = Column(String(100), nullable=True)
    location = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    capacity = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    copies = relationship("BookCopy", back_populates="shelf")

    __table_args__ = (
        CheckConstraint("capacity IS NULL OR capacity >= 0", name="check_capacity_non_negative"),
    )


class BookCopy(Base):
    """
    Book copies table - one row per physical, individually loanable item.

    Invariant maintained by the loan engine: status is "Checked Out" exactly
    when one open loan references the copy.
    """

    __tablename__ = "book_copies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    shelf_id = Column(Integer, ForeignKey("shelves.id"), nullable=True)
    barcode = Column(String(100), nullable=False, unique=True)
    location_code = Column(String(100), nullable=True)
    status = Column(
        _enum_column(CopyStatusEnum), nullable=False, default=CopyStatusEnum.AVAILABLE
    )
    condition = Column(String(50), nullable=False, default="Good")
    acquisition_date = Column(Date, nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    book = relationship("Book", back_populates="copies")
    shelf = relationship("Shelf", back_populates="copies")
    loans = relationship("Loan", back_populates="book_copy", passive_deletes="all")

    __table_args__ = (
        Index("idx_copy_book", "book_id"),
        Index("idx_copy_shelf", "shelf_id"),
        Index("idx_copy_status", "status"),
    )


class Member(Base):
    """
    Members table - library patrons who borrow copies.

    Only Active members may check out. ``pin`` and ``qr_code`` identify a
    member at the self-service desk.
    """

    __tablename__ = "members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, index=True)
    email = Column(String(255), nullable=True, unique=True)
    phone = Column(String(30), nullable=True)
    membership_type = Column(String(50), nullable=False, default="Standard")
    status = Column(
        _enum_column(MemberStatusEnum), nullable=False, default=MemberStatusEnum.ACTIVE
    )
    pin = Column(String(20), nullable=True)
    qr_code = Column(String(200), nullable=True, unique=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    loans = relationship("Loan", back_populates="member", passive_deletes="all")

    __table_args__ = (
        Index("idx_member_status", "status"),
        Index("idx_member_pin", "pin"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatusEnum.ACTIVE


class Loan(Base):
    """
    Loans table - the durable ledger of every borrow.

    A loan is created Borrowed with no return date and is closed exactly once
    (Returned or Lost), at which point return_date is set. Circulation never
    deletes rows; closed loans go with their copy or member when an
    administrator deletes those (ON DELETE CASCADE).
    """

    __tablename__ = "loans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    book_copy_id = Column(
        Integer, ForeignKey("book_copies.id", ondelete="CASCADE"), nullable=False
    )
    member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    transaction_id = Column(String(64), nullable=True)
    checkout_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=True)
    status = Column(
        _enum_column(LoanStatusEnum), nullable=False, default=LoanStatusEnum.BORROWED
    )
    return_condition = Column(_enum_column(ReturnConditionEnum), nullable=True)
    fine_amount = Column(Float, nullable=False, default=0.0)
    fine_paid = Column(Boolean, nullable=False, default=False)
    fine_paid_date = Column(DateTime, nullable=True)
    renewal_count = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    rating = Column(Integer, nullable=True)
    review = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    book_copy = relationship("BookCopy", back_populates="loans")
    member = relationship("Member", back_populates="loans")

    __table_args__ = (
        Index("idx_loan_copy", "book_copy_id"),
        Index("idx_loan_member", "member_id"),
        Index("idx_loan_transaction", "transaction_id"),
        Index("idx_loan_status", "status"),
        Index("idx_loan_due_date", "due_date"),
        CheckConstraint("renewal_count >= 0", name="check_renewal_non_negative"),
        CheckConstraint("fine_amount >= 0", name="check_fine_non_negative"),
        CheckConstraint(
            "(return_date IS NULL AND status = 'Borrowed') "
            "OR (return_date IS NOT NULL AND status != 'Borrowed')",
            name="check_return_date_matches_status",
        ),
        CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="check_rating"),
    )

    @property
    def is_open(self) -> bool:
        return self.return_date is None


class User(Base):
    """
    Users table - staff accounts that operate the desk.

    Orthogonal to circulation; passwords are stored hashed.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), nullable=False, unique=True)
    email = Column(String(255), nullable=False, unique=True)
    password = Column(String(255), nullable=False)
    name = Column(String(200), nullable=True)
    role = Column(_enum_column(UserRoleEnum), nullable=False, default=UserRoleEnum.STAFF)
    status = Column(
        _enum_column(UserStatusEnum), nullable=False, default=UserStatusEnum.ACTIVE
    )

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    @validates("username")
    def validate_username(self, key, value):  # noqa: ARG002
        if not value or len(value.strip()) < 3:
            raise ValueError("Username must be at least 3 characters")
        return value.strip()
