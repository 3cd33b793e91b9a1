"""
Database package for the library circulation server.

The schema and the session manager are exported here; repositories are
imported from their own modules.
"""

from .schema import (
    Base,
    Book,
    BookCopy,
    CopyStatusEnum,
    Loan,
    LoanStatusEnum,
    Member,
    MemberStatusEnum,
    ReturnConditionEnum,
    Shelf,
    User,
    UserRoleEnum,
    UserStatusEnum,
)
from .session import DatabaseManager, safe_flush, safe_query

__all__ = [
    "Base",
    "Book",
    "BookCopy",
    "CopyStatusEnum",
    "DatabaseManager",
    "Loan",
    "LoanStatusEnum",
    "Member",
    "MemberStatusEnum",
    "ReturnConditionEnum",
    "Shelf",
    "User",
    "UserRoleEnum",
    "UserStatusEnum",
    "safe_flush",
    "safe_query",
]
