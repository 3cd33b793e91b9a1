"""
Transaction grouping.

Loans created by one checkout call share a ``transaction_id`` and are shown
and returned together. This module turns flat ``LoanDetails`` rows into
``TransactionGroup`` views; it does no I/O.
"""

from collections.abc import Iterable

from ..models.loan import LoanDetails, TransactionGroup


def display_title(book_titles: list[str]) -> str:
    """``"Dune"`` for one book, ``"3 books: Dune, Emma..."`` for a batch."""
    if len(book_titles) == 1:
        return book_titles[0]
    shown = ", ".join(book_titles[:2])
    return f"{len(book_titles)} books: {shown}{'...' if len(book_titles) > 2 else ''}"


def _group_key(loan: LoanDetails) -> str:
    return loan.transaction_id or f"loan-{loan.id}"


def build_group(loans: list[LoanDetails]) -> TransactionGroup:
    """Build the view for loans already known to share one transaction."""
    if not loans:
        raise ValueError("A transaction group needs at least one loan")

    loans = sorted(loans, key=lambda loan: loan.id)
    first = loans[0]
    titles = [loan.book_title or f"Copy {loan.book_copy_id}" for loan in loans]

    return TransactionGroup(
        transaction_id=first.transaction_id,
        member_id=first.member_id,
        member_name=first.member_name,
        loans=loans,
        loan_ids=[loan.id for loan in loans],
        book_titles=titles,
        book_copy_ids=[loan.book_copy_id for loan in loans],
        barcodes=[loan.barcode for loan in loans if loan.barcode],
        total_books=len(loans),
        open_count=sum(1 for loan in loans if loan.is_open),
        checkout_date=min(loan.checkout_date for loan in loans),
        due_date=min(loan.due_date for loan in loans),
        is_batch=len(loans) > 1,
        display_title=display_title(titles),
    )


def group_loans(loans: Iterable[LoanDetails]) -> list[TransactionGroup]:
    """
    Group loans by transaction id, newest checkout first.

    Loans without a transaction id each form their own group.
    """
    buckets: dict[str, list[LoanDetails]] = {}
    for loan in loans:
        buckets.setdefault(_group_key(loan), []).append(loan)

    groups = [build_group(bucket) for bucket in buckets.values()]
    groups.sort(key=lambda group: (group.checkout_date, group.loan_ids[0]), reverse=True)
    return groups
