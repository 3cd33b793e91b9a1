"""
Tests for checkout.

Covers:
1. Single and multi-copy checkouts sharing one transaction id
2. Per-copy failures collected without aborting the call
3. Member eligibility and the open-loan limit
4. Atomicity of the loan row and the copy status
"""

import re
from datetime import timedelta

import pytest

from library_circulation.config import LoanPolicy
from library_circulation.database.copy_repository import CopyRepository
from library_circulation.database.loan_repository import LoanRepository
from library_circulation.errors import (
    CopyNotFound,
    CopyUnavailable,
    LoanLimitExceeded,
    MemberNotEligible,
    MemberNotFound,
    ValidationError,
)
from library_circulation.models.book import CopyStatus
from library_circulation.models.loan import LoanStatus
from library_circulation.services.loan_engine import LoanEngine, generate_transaction_id


def copy_status(db, copy_id):
    with db.read_scope() as session:
        return CopyRepository(session).get(copy_id).status


def test_transaction_id_format():
    assert re.fullmatch(r"LOAN-\d{13}-42-\d{4}", generate_transaction_id(42))


class TestCheckout:
    def test_single_copy(self, db, engine, library, clock):
        copy_id = library.copy_ids[0]

        result = engine.checkout(library.alice_id, [copy_id])

        assert result.errors == []
        assert result.partial is False
        assert len(result.loans) == 1
        loan = result.loans[0]
        assert loan.book_copy_id == copy_id
        assert loan.member_id == library.alice_id
        assert loan.status == LoanStatus.BORROWED
        assert loan.checkout_date == clock.current
        assert loan.due_date == clock.current + timedelta(days=14)
        assert loan.return_date is None
        assert loan.fine_amount == 0.0
        assert loan.renewal_count == 0
        assert loan.transaction_id == result.transaction_id
        assert copy_status(db, copy_id) == CopyStatus.CHECKED_OUT

    def test_multiple_copies_share_transaction(self, engine, library):
        result = engine.checkout(library.alice_id, library.copy_ids[:3])

        assert len(result.loans) == 3
        assert {loan.transaction_id for loan in result.loans} == {result.transaction_id}
        assert result.transaction_id.startswith("LOAN-")

    def test_custom_duration(self, engine, library, clock):
        result = engine.checkout(library.alice_id, [library.copy_ids[0]], duration_days=7)

        assert result.loans[0].due_date == clock.current + timedelta(days=7)

    def test_duplicate_copy_ids_attempted_once(self, engine, library):
        copy_id = library.copy_ids[0]

        result = engine.checkout(library.alice_id, [copy_id, copy_id])

        assert len(result.loans) == 1
        assert result.errors == []

    def test_unavailable_copy_reported_with_holder(self, db, engine, library):
        copy_id = library.copy_ids[0]
        engine.checkout(library.bob_id, [copy_id])

        result = engine.checkout(library.alice_id, [copy_id, library.copy_ids[1]])

        assert result.partial is True
        assert [loan.book_copy_id for loan in result.loans] == [library.copy_ids[1]]
        assert len(result.errors) == 1
        failure = result.errors[0]
        assert failure.book_copy_id == copy_id
        assert failure.kind == "conflict"
        assert "Bob Borrower" in failure.error

    def test_damaged_copy_not_loanable(self, db, engine, library):
        copy_id = library.copy_ids[0]
        with db.session_scope() as session:
            CopyRepository(session).set_status(copy_id, CopyStatus.DAMAGED)

        result = engine.checkout(library.alice_id, [copy_id])

        assert result.loans == []
        assert "Damaged" in result.errors[0].error
        assert copy_status(db, copy_id) == CopyStatus.DAMAGED

    def test_unknown_copy_collected(self, engine, library):
        result = engine.checkout(library.alice_id, [9999, library.copy_ids[0]])

        assert len(result.loans) == 1
        assert result.errors[0].book_copy_id == 9999
        assert result.errors[0].kind == "not_found"

    def test_unknown_member_fails_whole_call(self, db, engine, library):
        with pytest.raises(MemberNotFound):
            engine.checkout(9999, [library.copy_ids[0]])

        assert copy_status(db, library.copy_ids[0]) == CopyStatus.AVAILABLE

    def test_inactive_member_refused(self, db, engine, library):
        with pytest.raises(MemberNotEligible):
            engine.checkout(library.carol_id, [library.copy_ids[0]])

        with db.read_scope() as session:
            assert LoanRepository(session).count_active() == 0

    def test_empty_copy_list(self, engine, library):
        with pytest.raises(ValidationError):
            engine.checkout(library.alice_id, [])

    def test_invalid_duration(self, engine, library):
        with pytest.raises(ValidationError):
            engine.checkout(library.alice_id, [library.copy_ids[0]], duration_days=0)


class TestLoanLimit:
    @pytest.fixture
    def policy(self):
        return LoanPolicy(max_open_loans=2)

    def test_limit_stops_extra_copies(self, db, engine, library):
        result = engine.checkout(library.alice_id, library.copy_ids[:3])

        assert len(result.loans) == 2
        assert len(result.errors) == 1
        assert result.errors[0].book_copy_id == library.copy_ids[2]
        assert result.errors[0].kind == "limit_exceeded"
        assert copy_status(db, library.copy_ids[2]) == CopyStatus.AVAILABLE

    def test_returned_loans_free_a_slot(self, engine, library):
        first = engine.checkout(library.alice_id, library.copy_ids[:2])
        engine.return_loan(first.loans[0].id)

        # The return closed the whole transaction, so both slots are free
        result = engine.checkout(library.alice_id, library.copy_ids[2:4])
        assert len(result.loans) == 2

    def test_checkout_copy_raises_directly(self, engine, library):
        engine.checkout(library.alice_id, library.copy_ids[:2])

        with pytest.raises(LoanLimitExceeded):
            engine.checkout_copy(library.alice_id, library.copy_ids[2])

    def test_default_limit_of_five(self, db, library):
        engine = LoanEngine(db)
        loans = [
            engine.checkout_copy(library.alice_id, copy_id, transaction_id=f"LIMIT-{copy_id}")
            for copy_id in library.copy_ids[:5]
        ]

        with pytest.raises(LoanLimitExceeded):
            engine.checkout_copy(library.alice_id, library.copy_ids[5])

        engine.return_loan(loans[0].id)
        assert engine.checkout_copy(library.alice_id, library.copy_ids[5]).status == LoanStatus.BORROWED


class TestCheckoutCopy:
    def test_unknown_copy(self, engine, library):
        with pytest.raises(CopyNotFound):
            engine.checkout_copy(library.alice_id, 9999)

    def test_second_checkout_of_same_copy(self, engine, library):
        engine.checkout_copy(library.alice_id, library.copy_ids[0])

        with pytest.raises(CopyUnavailable):
            engine.checkout_copy(library.bob_id, library.copy_ids[0])

    def test_generates_transaction_id_when_missing(self, engine, library):
        loan = engine.checkout_copy(library.alice_id, library.copy_ids[0])

        assert loan.transaction_id.startswith("LOAN-")
        assert loan.transaction_id.split("-")[2] == str(library.alice_id)


def test_engine_built_with_defaults(db):
    engine = LoanEngine(db)
    assert engine.policy == LoanPolicy()
