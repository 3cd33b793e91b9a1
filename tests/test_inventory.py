"""
Tests for the catalog repositories and the guards that protect circulation.

Deleting a copy, book or member is refused while one of its loans is open.
Once everything is returned the delete goes through and takes the closed
loans with it.
"""

import pytest

from library_circulation.database.book_repository import BookRepository
from library_circulation.database.copy_repository import CopyRepository
from library_circulation.database.member_repository import MemberRepository
from library_circulation.database.repository import PaginationParams
from library_circulation.database.shelf_repository import DEFAULT_SHELF_CAPACITY, ShelfRepository
from library_circulation.errors import (
    BookNotFound,
    DuplicateError,
    HasActiveLoan,
    HasActiveLoans,
    LoanNotFound,
    MemberNotEligible,
    ShelfNotEmpty,
    ShelfNotFound,
    ValidationError,
)
from library_circulation.models.book import BookCopyCreate, BookCreate, BookUpdate, CopyStatus
from library_circulation.models.member import MemberCreate, MemberStatus, MemberUpdate
from library_circulation.models.shelf import ShelfCreate


class TestBooks:
    def test_search(self, db, library):
        with db.read_scope() as session:
            books = BookRepository(session)
            assert [b.title for b in books.search("herbert")] == ["Dune"]
            assert [b.title for b in books.search("9780141439587")] == ["Emma"]
            assert len(books.search()) == 2

    def test_isbn_lookup_normalizes(self, db, library):
        with db.read_scope() as session:
            assert BookRepository(session).get_by_isbn("978-0-441-01359-3").title == "Dune"

    def test_duplicate_isbn(self, db, library):
        with pytest.raises(DuplicateError):
            with db.session_scope() as session:
                BookRepository(session).create(BookCreate(title="Dune Again", isbn="9780441013593"))

    def test_update(self, db, library):
        with db.session_scope() as session:
            book = BookRepository(session).update(library.dune_id, BookUpdate(category="Sci-Fi"))
        assert book.category == "Sci-Fi"

    def test_empty_update_rejected(self, db, library):
        with pytest.raises(ValidationError):
            with db.session_scope() as session:
                BookRepository(session).update(library.dune_id, BookUpdate())

    def test_availability(self, db, engine, library):
        engine.checkout(library.alice_id, [library.copy_ids[0]])
        with db.session_scope() as session:
            CopyRepository(session).set_status(library.copy_ids[1], CopyStatus.MAINTENANCE)

        with db.read_scope() as session:
            availability = BookRepository(session).availability(library.dune_id)

        assert availability.total_copies == 3
        assert availability.available_copies == 1
        assert availability.checked_out_copies == 1
        assert availability.maintenance_copies == 1
        assert availability.is_available is True

    def test_delete_never_lent_book_removes_copies(self, db, library):
        with db.session_scope() as session:
            BookRepository(session).delete(library.emma_id)

        with db.read_scope() as session:
            assert BookRepository(session).get_by_id(library.emma_id) is None
            assert CopyRepository(session).list_copies(book_id=library.emma_id) == []

    def test_delete_blocked_while_lent_then_allowed_after_return(self, db, engine, library):
        loan = engine.checkout(library.alice_id, [library.copy_ids[0]]).loans[0]

        with pytest.raises(HasActiveLoan):
            with db.session_scope() as session:
                BookRepository(session).delete(library.dune_id)

        engine.return_loan(loan.id)
        with db.session_scope() as session:
            BookRepository(session).delete(library.dune_id)

        with db.read_scope() as session:
            assert BookRepository(session).get_by_id(library.dune_id) is None
            assert CopyRepository(session).list_copies(book_id=library.dune_id) == []
        with pytest.raises(LoanNotFound):
            engine.get_loan_details(loan.id)

    def test_other_titles_keep_their_loans(self, db, engine, library):
        emma_loan = engine.checkout(library.bob_id, [library.copy_ids[3]]).loans[0]

        with db.session_scope() as session:
            BookRepository(session).delete(library.dune_id)

        assert engine.get_loan_details(emma_loan.id).book_title == "Emma"

    def test_popular_categories(self, db, library):
        with db.session_scope() as session:
            books = BookRepository(session)
            books.update(library.dune_id, BookUpdate(category="Fiction"))
            books.update(library.emma_id, BookUpdate(category="Fiction"))
            books.create(BookCreate(title="Cosmos", category="Science"))
            books.create(BookCreate(title="Untagged"))

        with db.read_scope() as session:
            ranking = BookRepository(session).popular_categories()

        assert [(row.category, row.book_count) for row in ranking] == [("Fiction", 2), ("Science", 1)]

    def test_pagination(self, db, library):
        with db.read_scope() as session:
            page = BookRepository(session).get_all(PaginationParams(page=1, page_size=1), "title")

        assert page.total == 2
        assert page.total_pages == 2
        assert page.has_next is True
        assert [b.title for b in page.items] == ["Dune"]


class TestCopies:
    def test_create_requires_book_and_shelf(self, db, library):
        with pytest.raises(BookNotFound):
            with db.session_scope() as session:
                CopyRepository(session).create(BookCopyCreate(book_id=999, barcode="X-1"))
        with pytest.raises(ShelfNotFound):
            with db.session_scope() as session:
                CopyRepository(session).create(
                    BookCopyCreate(book_id=library.dune_id, barcode="X-1", shelf_id=999)
                )

    def test_duplicate_barcode(self, db, library):
        with pytest.raises(DuplicateError):
            with db.session_scope() as session:
                CopyRepository(session).create(
                    BookCopyCreate(book_id=library.dune_id, barcode="DUNE-001")
                )

    def test_new_copy_cannot_start_checked_out(self):
        with pytest.raises(ValueError):
            BookCopyCreate(book_id=1, barcode="X-1", status=CopyStatus.CHECKED_OUT)

    def test_list_filters(self, db, engine, library):
        engine.checkout(library.alice_id, [library.copy_ids[0]])

        with db.read_scope() as session:
            copies = CopyRepository(session)
            assert len(copies.list_copies(book_id=library.dune_id)) == 3
            assert len(copies.list_copies(shelf_id=library.shelf_id)) == 6
            checked_out = copies.list_copies(status=CopyStatus.CHECKED_OUT)
            assert [c.id for c in checked_out] == [library.copy_ids[0]]
            assert copies.get_by_barcode("EMMA-002").id == library.copy_ids[4]

    def test_status_cannot_be_set_to_checked_out(self, db, library):
        with pytest.raises(ValidationError):
            with db.session_scope() as session:
                CopyRepository(session).set_status(library.copy_ids[0], CopyStatus.CHECKED_OUT)

    def test_status_of_lent_copy_locked(self, db, engine, library):
        engine.checkout(library.alice_id, [library.copy_ids[0]])

        with pytest.raises(HasActiveLoan):
            with db.session_scope() as session:
                CopyRepository(session).set_status(library.copy_ids[0], CopyStatus.MAINTENANCE)

    def test_repaired_copy_returns_to_circulation(self, db, engine, library):
        loan = engine.checkout(library.alice_id, [library.copy_ids[0]]).loans[0]
        engine.return_loan(loan.id, "Damaged")

        with db.session_scope() as session:
            copy = CopyRepository(session).set_status(library.copy_ids[0], CopyStatus.AVAILABLE)

        assert copy.status == CopyStatus.AVAILABLE
        assert len(engine.checkout(library.bob_id, [library.copy_ids[0]]).loans) == 1

    def test_move(self, db, library):
        with db.session_scope() as session:
            shelf = ShelfRepository(session).create(ShelfCreate(name="Returns Cart"))
            moved = CopyRepository(session).move_copy(library.copy_ids[0], shelf.id)
            unshelved = CopyRepository(session).move_copy(library.copy_ids[1], None)

        assert moved.shelf_id == shelf.id
        assert unshelved.shelf_id is None

    def test_delete_guards(self, db, engine, library):
        loan = engine.checkout(library.alice_id, [library.copy_ids[0]]).loans[0]
        with pytest.raises(HasActiveLoan):
            with db.session_scope() as session:
                CopyRepository(session).delete(library.copy_ids[0])

        engine.return_loan(loan.id)
        with db.session_scope() as session:
            CopyRepository(session).delete(library.copy_ids[0])

        with db.read_scope() as session:
            assert not CopyRepository(session).exists(library.copy_ids[0])
        with pytest.raises(LoanNotFound):
            engine.get_loan_details(loan.id)


class TestShelves:
    def test_delete_requires_empty_shelf(self, db, library):
        with pytest.raises(ShelfNotEmpty):
            with db.session_scope() as session:
                ShelfRepository(session).delete(library.shelf_id)

    def test_reassign_then_delete(self, db, library):
        with db.session_scope() as session:
            shelves = ShelfRepository(session)
            target = shelves.create(ShelfCreate(name="Fiction B", capacity=10))
            moved = shelves.reassign_copies(library.shelf_id, target.id)
            shelves.delete(library.shelf_id)

        assert moved == 6
        with db.read_scope() as session:
            assert ShelfRepository(session).count_copies(target.id) == 6

    def test_reassign_to_same_shelf(self, db, library):
        with pytest.raises(ValidationError):
            with db.session_scope() as session:
                ShelfRepository(session).reassign_copies(library.shelf_id, library.shelf_id)

    def test_capacities(self, db, library):
        with db.session_scope() as session:
            ShelfRepository(session).create(ShelfCreate(name="Annex", capacity=4))

        with db.read_scope() as session:
            report = {row.name: row for row in ShelfRepository(session).shelf_capacities()}

        fiction = report["Fiction A"]
        assert fiction.capacity == DEFAULT_SHELF_CAPACITY
        assert fiction.copy_count == 6
        assert fiction.usage_percent == 6.0
        assert fiction.is_over_capacity is False
        assert report["Annex"].copy_count == 0


class TestMembers:
    def test_lookups(self, db, library):
        with db.read_scope() as session:
            members = MemberRepository(session)
            assert members.get_by_credentials("alice@example.com", "1234").id == library.alice_id
            assert members.get_by_credentials("ALICE@example.com", "1234").id == library.alice_id
            assert members.get_by_credentials("alice@example.com", "0000") is None
            assert members.get_by_credentials("bob@example.com", "1234") is None
            assert members.get_by_qr_code("QR-ALICE").id == library.alice_id
            assert members.get_by_email("bob@example.com").id == library.bob_id

    def test_shared_pin_resolves_by_email(self, db, library):
        with db.session_scope() as session:
            dora = MemberRepository(session).create(
                MemberCreate(name="Dora Same-Pin", email="dora@example.com", pin="1234")
            )

        with db.read_scope() as session:
            members = MemberRepository(session)
            assert members.get_by_credentials("dora@example.com", "1234").id == dora.id
            assert members.get_by_credentials("alice@example.com", "1234").id == library.alice_id

    def test_search(self, db, library):
        with db.read_scope() as session:
            members = MemberRepository(session)
            assert [m.name for m in members.search("bob")] == ["Bob Borrower"]
            inactive = members.search(status=MemberStatus.INACTIVE)
            assert [m.id for m in inactive] == [library.carol_id]

    def test_deactivated_member_cannot_borrow(self, db, engine, library):
        with db.session_scope() as session:
            MemberRepository(session).update(library.bob_id, MemberUpdate(status=MemberStatus.INACTIVE))

        with pytest.raises(MemberNotEligible):
            engine.checkout(library.bob_id, [library.copy_ids[0]])

    def test_delete_guards(self, db, engine, library):
        loan = engine.checkout(library.alice_id, [library.copy_ids[0]]).loans[0]
        with pytest.raises(HasActiveLoans):
            with db.session_scope() as session:
                MemberRepository(session).delete(library.alice_id)

        engine.return_loan(loan.id)
        with db.session_scope() as session:
            MemberRepository(session).delete(library.alice_id)

        with db.read_scope() as session:
            assert not MemberRepository(session).exists(library.alice_id)
        with pytest.raises(LoanNotFound):
            engine.get_loan_details(loan.id)
