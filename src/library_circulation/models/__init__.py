"""Pydantic models for the library circulation server."""

from .book import (
    Book,
    BookAvailability,
    BookCopy,
    BookCopyCreate,
    BookCreate,
    BookUpdate,
    CategoryPopularity,
    CopyStatus,
)
from .loan import (
    BatchReturnRequest,
    BatchReturnResult,
    CategoryCount,
    CheckoutFailure,
    CheckoutRequest,
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
from .member import Member, MemberCreate, MemberStatus, MemberUpdate
from .shelf import Shelf, ShelfCapacity, ShelfCreate, ShelfUpdate
from .user import User, UserCreate, UserRole, UserStatus, UserUpdate

__all__ = [
    "BatchReturnRequest",
    "BatchReturnResult",
    "Book",
    "BookAvailability",
    "BookCopy",
    "BookCopyCreate",
    "BookCreate",
    "BookUpdate",
    "CategoryCount",
    "CategoryPopularity",
    "CheckoutFailure",
    "CheckoutRequest",
    "CheckoutResult",
    "CopyStatus",
    "Loan",
    "LoanDetails",
    "LoanStatistics",
    "LoanStatus",
    "Member",
    "MemberCreate",
    "MemberStatistics",
    "MemberStatus",
    "MemberUpdate",
    "PopularBook",
    "QRReturnRequest",
    "QRReturnResult",
    "ReturnCondition",
    "ReturnFailure",
    "ReturnItem",
    "ReturnResult",
    "Shelf",
    "ShelfCapacity",
    "ShelfCreate",
    "ShelfUpdate",
    "TransactionGroup",
    "User",
    "UserCreate",
    "UserRole",
    "UserStatus",
    "UserUpdate",
]
