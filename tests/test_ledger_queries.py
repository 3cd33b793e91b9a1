"""
Tests for ledger queries: listings, overdue and due-soon windows, statistics
and transaction groups.

Timeline used throughout (see ``ledger``):
- 2024-03-10 Alice borrows Dune and Emma together (due 03-24)
- 2024-03-15 Bob borrows another Dune for 3 days (due 03-18)
"""

from datetime import datetime

import pytest

from library_circulation.database.book_repository import BookRepository
from library_circulation.errors import LoanNotFound, MemberNotFound, ValidationError
from library_circulation.models.book import BookUpdate
from library_circulation.models.loan import LoanStatus


@pytest.fixture
def ledger(engine, library, clock):
    alice = engine.checkout(library.alice_id, [library.copy_ids[0], library.copy_ids[3]])
    clock.advance(days=5)
    bob = engine.checkout(library.bob_id, [library.copy_ids[1]], duration_days=3)
    return alice, bob


class TestLoanDetails:
    def test_joined_fields(self, engine, library, ledger):
        alice, _ = ledger

        details = engine.get_loan_details(alice.loans[0].id)

        assert details.book_title == "Dune"
        assert details.book_author == "Frank Herbert"
        assert details.book_id == library.dune_id
        assert details.barcode == "DUNE-001"
        assert details.shelf_name == "Fiction A"
        assert details.member_name == "Alice Reader"
        assert details.member_email == "alice@example.com"
        assert details.copy_status == "Checked Out"
        assert details.days_overdue == 0

    def test_unknown_loan(self, engine, ledger):
        with pytest.raises(LoanNotFound):
            engine.get_loan_details(9999)


class TestListings:
    def test_newest_first(self, engine, ledger):
        alice, bob = ledger

        loans = engine.list_loans()

        assert [loan.id for loan in loans][0] == bob.loans[0].id
        assert len(loans) == 3

    def test_filters(self, engine, library, ledger):
        alice, bob = ledger

        assert {loan.id for loan in engine.list_loans(member_id=library.alice_id)} == {
            loan.id for loan in alice.loans
        }
        dune_loans = engine.list_loans(book_id=library.dune_id)
        assert {loan.id for loan in dune_loans} == {alice.loans[0].id, bob.loans[0].id}

        engine.return_loan(bob.loans[0].id)
        returned = engine.list_loans(status=LoanStatus.RETURNED)
        assert [loan.id for loan in returned] == [bob.loans[0].id]

    def test_overdue_only(self, engine, clock, ledger):
        _, bob = ledger
        clock.current = datetime(2024, 3, 20, 10, 0)

        assert [loan.id for loan in engine.list_loans(overdue_only=True)] == [bob.loans[0].id]


class TestOverdue:
    def test_all_overdue_oldest_due_first(self, engine, clock, ledger):
        alice, bob = ledger
        clock.current = datetime(2024, 3, 26, 10, 0)

        overdue = engine.get_overdue()

        assert [loan.id for loan in overdue][0] == bob.loans[0].id
        assert len(overdue) == 3
        by_id = {loan.id: loan for loan in overdue}
        assert by_id[bob.loans[0].id].days_overdue == 8
        assert by_id[alice.loans[0].id].days_overdue == 2

    def test_minimum_days_overdue(self, engine, clock, ledger):
        _, bob = ledger
        clock.current = datetime(2024, 3, 26, 10, 0)

        assert [loan.id for loan in engine.get_overdue(5)] == [bob.loans[0].id]

    def test_returned_loans_never_overdue(self, engine, clock, ledger):
        _, bob = ledger
        clock.current = datetime(2024, 3, 20, 10, 0)
        engine.return_loan(bob.loans[0].id)

        assert engine.get_overdue() == []

    def test_negative_days_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.get_overdue(-1)


class TestDueSoon:
    def test_window_excludes_overdue(self, engine, clock, ledger):
        alice, _ = ledger
        clock.current = datetime(2024, 3, 22, 10, 0)

        due_soon = engine.get_due_soon()

        assert {loan.id for loan in due_soon} == {loan.id for loan in alice.loans}

    def test_explicit_window(self, engine, clock, ledger):
        clock.current = datetime(2024, 3, 15, 10, 0)

        assert len(engine.get_due_soon(3)) == 1
        assert len(engine.get_due_soon(10)) == 3


class TestStatistics:
    def test_counts(self, engine, clock, ledger):
        alice, _ = ledger
        clock.current = datetime(2024, 3, 26, 10, 0)
        engine.return_loan(alice.loans[0].id)

        stats = engine.get_statistics()

        assert stats.active_loans == 1
        assert stats.overdue_loans == 1
        assert stats.current_month_checkouts == 3
        assert stats.current_month_returns == 2
        assert stats.uncollected_fines == 20.0

    def test_month_boundary(self, engine, clock, ledger):
        clock.current = datetime(2024, 4, 2, 9, 0)

        stats = engine.get_statistics()

        assert stats.current_month_checkouts == 0
        assert stats.active_loans == 3


class TestMemberViews:
    def test_active_and_history(self, engine, library, ledger):
        alice, _ = ledger
        engine.return_loan(alice.loans[0].id)
        again = engine.checkout(library.alice_id, [library.copy_ids[4]])

        active = engine.get_member_active_loans(library.alice_id)
        history = engine.get_member_history(library.alice_id)

        assert [loan.id for loan in active] == [again.loans[0].id]
        assert {loan.id for loan in history} == {loan.id for loan in alice.loans}
        assert len(engine.get_member_loans(library.alice_id)) == 3

    def test_unknown_member(self, engine, ledger):
        with pytest.raises(MemberNotFound):
            engine.get_member_active_loans(9999)
        with pytest.raises(MemberNotFound):
            engine.get_member_history(9999)

    def test_returnable_books_grouped(self, engine, library, ledger):
        alice, _ = ledger

        groups = engine.get_returnable_books(library.alice_id)

        assert len(groups) == 1
        group = groups[0]
        assert group.transaction_id == alice.transaction_id
        assert group.total_books == 2
        assert group.is_batch is True
        assert group.book_titles == ["Dune", "Emma"]
        assert group.display_title == "2 books: Dune, Emma"
        assert group.barcodes == ["DUNE-001", "EMMA-001"]


class TestMemberStatistics:
    @pytest.fixture
    def categorised(self, db, library):
        with db.session_scope() as session:
            books = BookRepository(session)
            books.update(library.dune_id, BookUpdate(category="Science Fiction"))
            books.update(library.emma_id, BookUpdate(category="Classics"))

    def test_returned_member(self, engine, library, ledger, categorised):
        alice, _ = ledger
        engine.return_loan(alice.loans[0].id)

        stats = engine.get_member_statistics(library.alice_id)

        assert stats.member_id == library.alice_id
        assert stats.total_loans == 2
        assert stats.active_loans == 0
        assert stats.returned_loans == 2
        assert stats.overdue_loans == 0
        assert [(row.category, row.count) for row in stats.favorite_categories] == [
            ("Classics", 1),
            ("Science Fiction", 1),
        ]

    def test_overdue_member(self, engine, clock, library, ledger):
        clock.advance(days=5)

        stats = engine.get_member_statistics(library.bob_id)

        assert stats.total_loans == 1
        assert stats.active_loans == 1
        assert stats.overdue_loans == 1
        assert stats.favorite_categories == []

    def test_member_without_loans(self, engine, library):
        stats = engine.get_member_statistics(library.carol_id)

        assert stats.total_loans == 0
        assert stats.returned_loans == 0

    def test_unknown_member(self, engine, ledger):
        with pytest.raises(MemberNotFound):
            engine.get_member_statistics(9999)


class TestPopularBooks:
    def test_ranked_by_borrow_count(self, engine, library, ledger):
        books = engine.get_popular_books()

        assert [(book.title, book.borrow_count) for book in books] == [("Dune", 2), ("Emma", 1)]
        assert books[0].book_id == library.dune_id
        assert books[0].author == "Frank Herbert"

    def test_limit(self, engine, ledger):
        assert [book.title for book in engine.get_popular_books(1)] == ["Dune"]

    def test_returned_loans_still_count(self, engine, ledger):
        alice, _ = ledger
        engine.return_loan(alice.loans[0].id)

        assert engine.get_popular_books()[0].borrow_count == 2

    def test_invalid_limit(self, engine):
        with pytest.raises(ValidationError):
            engine.get_popular_books(0)


class TestTransactionGroups:
    def test_newest_first(self, engine, ledger):
        alice, bob = ledger

        groups = engine.list_transaction_groups()

        assert [group.transaction_id for group in groups] == [
            bob.transaction_id,
            alice.transaction_id,
        ]

    def test_open_only(self, engine, ledger):
        alice, bob = ledger
        engine.return_loan(bob.loans[0].id)

        groups = engine.list_transaction_groups(open_only=True)

        assert [group.transaction_id for group in groups] == [alice.transaction_id]

    def test_by_member(self, engine, library, ledger):
        _, bob = ledger

        groups = engine.list_transaction_groups(member_id=library.bob_id)

        assert [group.transaction_id for group in groups] == [bob.transaction_id]

    def test_get_transaction(self, engine, ledger):
        alice, _ = ledger

        group = engine.get_transaction(alice.transaction_id)

        assert group.loan_ids == sorted(loan.id for loan in alice.loans)
        assert group.open_count == 2

    def test_unknown_transaction(self, engine, ledger):
        with pytest.raises(LoanNotFound):
            engine.get_transaction("LOAN-0-0-0000")
