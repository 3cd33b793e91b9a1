"""Test configuration and fixtures for the library circulation server.

Every test gets:
1. An isolated SQLite file database in ``tmp_path`` (file-backed so the
   locking behaviour matches production)
2. A loan engine driven by a ``FakeClock`` so due dates and fines are
   deterministic
3. A small seeded catalog: one shelf, two books, six copies, two active
   members and one inactive member
"""

import os
from collections.abc import Generator
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

import logfire
import pytest

from library_circulation.config import LoanPolicy, ServerConfig
from library_circulation.database.book_repository import BookRepository
from library_circulation.database.copy_repository import CopyRepository
from library_circulation.database.member_repository import MemberRepository
from library_circulation.database.session import DatabaseManager
from library_circulation.database.shelf_repository import ShelfRepository
from library_circulation.models.book import BookCopyCreate, BookCreate
from library_circulation.models.member import MemberCreate, MemberStatus
from library_circulation.models.shelf import ShelfCreate
from library_circulation.services.loan_engine import LoanEngine

logfire.configure(send_to_logfire=False, console=False)

START = datetime(2024, 3, 10, 10, 0, 0)


# === Clock ===


class FakeClock:
    """Callable clock the tests move forward by hand."""

    def __init__(self, now: datetime = START):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> datetime:
        self.current += timedelta(**delta)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# === Database Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    return tmp_path / "test_library.db"


@pytest.fixture
def db(test_db_path: Path) -> Generator[DatabaseManager, None, None]:
    """An opened, initialized file database, disposed after the test."""
    manager = DatabaseManager(f"sqlite:///{test_db_path}", busy_timeout=10).open()
    manager.init_database()
    yield manager
    manager.close()


@pytest.fixture
def policy() -> LoanPolicy:
    return LoanPolicy()


@pytest.fixture
def engine(db: DatabaseManager, policy: LoanPolicy, clock: FakeClock) -> LoanEngine:
    return LoanEngine(db, policy, clock=clock)


# === Seed Data ===


@dataclass
class Library:
    shelf_id: int
    dune_id: int
    emma_id: int
    copy_ids: list[int] = field(default_factory=list)
    alice_id: int = 0
    bob_id: int = 0
    carol_id: int = 0


@pytest.fixture
def library(db: DatabaseManager) -> Library:
    """Seed a shelf, two books with three copies each and three members."""
    with db.session_scope() as session:
        shelf = ShelfRepository(session).create(ShelfCreate(name="Fiction A", section="Fiction"))
        books = BookRepository(session)
        dune = books.create(BookCreate(title="Dune", author="Frank Herbert", isbn="9780441013593"))
        emma = books.create(BookCreate(title="Emma", author="Jane Austen", isbn="9780141439587"))

        copies = CopyRepository(session)
        copy_ids = []
        for book, prefix in ((dune, "DUNE"), (emma, "EMMA")):
            for n in range(1, 4):
                copy = copies.create(
                    BookCopyCreate(book_id=book.id, barcode=f"{prefix}-{n:03d}", shelf_id=shelf.id)
                )
                copy_ids.append(copy.id)

        members = MemberRepository(session)
        alice = members.create(
            MemberCreate(name="Alice Reader", email="alice@example.com", pin="1234", qr_code="QR-ALICE")
        )
        bob = members.create(MemberCreate(name="Bob Borrower", email="bob@example.com"))
        carol = members.create(MemberCreate(name="Carol Gone", status=MemberStatus.INACTIVE))

    return Library(
        shelf_id=shelf.id,
        dune_id=dune.id,
        emma_id=emma.id,
        copy_ids=copy_ids,
        alice_id=alice.id,
        bob_id=bob.id,
        carol_id=carol.id,
    )


# === Configuration Fixtures ===


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Remove LIBRARY_* variables for the duration of a test."""
    original_env = os.environ.copy()
    for key in list(os.environ.keys()):
        if key.startswith("LIBRARY_"):
            del os.environ[key]

    yield

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def test_config(test_db_path: Path, clean_env) -> ServerConfig:
    return ServerConfig(
        server_name="test-library",
        server_version="0.0.1-test",
        database_path=test_db_path,
        debug=True,
        log_level="DEBUG",
    )
