"""
Loan routes.

Every route delegates to the ``LoanEngine``; request bodies go through
``payloads`` first so all historical client shapes are accepted. Static
paths are declared before ``/{loan_id}`` so they are not captured by it.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, Query, status

from ..errors import InvalidPayload
from ..models.loan import LoanStatus
from ..payloads import (
    normalize_batch_return,
    normalize_checkout,
    normalize_fine_payment,
    normalize_qr_return,
    normalize_renewal,
    normalize_single_return,
)
from ..services.loan_engine import LoanEngine
from .dependencies import envelope, get_engine, respond

router = APIRouter(prefix="/loans", tags=["Loans"])

HTTP_MULTI_STATUS = 207


# === Mutations ===


@router.post("/checkout")
@router.post("/borrow")
def checkout_books(payload: Any = Body(None), engine: LoanEngine = Depends(get_engine)):
    """Check out one or more copies. 201 when all succeed, 207 when some fail."""
    request = normalize_checkout(payload)
    result = engine.checkout(request.member_id, request.copy_ids, request.duration_days)

    if not result.errors:
        return respond(
            result,
            f"Successfully checked out {len(result.loans)} book(s)",
            status.HTTP_201_CREATED,
        )
    if result.loans:
        return respond(
            result,
            f"Checked out {len(result.loans)} book(s), {len(result.errors)} failed",
            HTTP_MULTI_STATUS,
        )
    return respond(result, "No books could be checked out", HTTP_MULTI_STATUS)


@router.post("/return")
@router.post("/member-return")
def return_books(payload: Any = Body(None), engine: LoanEngine = Depends(get_engine)):
    request = normalize_batch_return(payload)
    result = engine.return_loans(request.returns)
    if result.errors:
        return respond(
            result,
            f"Returned {len(result.returned)} book(s), {len(result.errors)} failed",
            HTTP_MULTI_STATUS,
        )
    return envelope(result, f"Successfully returned {len(result.returned)} book(s)")


@router.post("/return-qr")
def return_books_via_qr(payload: Any = Body(None), engine: LoanEngine = Depends(get_engine)):
    if isinstance(payload, dict) and "qrData" in payload:
        payload = payload["qrData"]
    result = engine.return_via_qr(normalize_qr_return(payload))
    return envelope(result, result.message)


@router.post("/{loan_id}/return")
def return_book(loan_id: int, payload: Any = Body(None), engine: LoanEngine = Depends(get_engine)):
    item = normalize_single_return(loan_id, payload)
    result = engine.return_loan(item.loan_id, item.condition, item.note)
    message = f"Returned {len(result.returned)} book(s)"
    if result.total_fine:
        message += f"; fine due: {result.total_fine:.2f}"
    return envelope(result, message)


@router.post("/{loan_id}/renew")
def renew_loan(loan_id: int, payload: Any = Body(None), engine: LoanEngine = Depends(get_engine)):
    request = normalize_renewal(payload)
    loan = engine.renew(loan_id, request.extension_days)
    return envelope({"loan": loan}, f"Loan renewed until {loan.due_date:%Y-%m-%d}")


@router.post("/{loan_id}/pay-fine")
def pay_fine(loan_id: int, payload: Any = Body(None), engine: LoanEngine = Depends(get_engine)):
    request = normalize_fine_payment(payload)
    loan = engine.pay_fine(loan_id, request.amount)
    return envelope({"loan": loan}, "Fine payment recorded")


@router.patch("/{loan_id}/lost")
def mark_lost(loan_id: int, payload: Any = Body(None), engine: LoanEngine = Depends(get_engine)):
    note = payload.get("note") if isinstance(payload, dict) else None
    loan = engine.mark_lost(loan_id, note)
    return envelope({"loan": loan}, f"Loan marked lost; fine due: {loan.fine_amount:.2f}")


@router.patch("/{loan_id}/note")
def add_note(loan_id: int, payload: Any = Body(None), engine: LoanEngine = Depends(get_engine)):
    note = payload.get("note") if isinstance(payload, dict) else payload
    if not isinstance(note, str):
        raise InvalidPayload("A note string is required")
    loan = engine.add_note(loan_id, note)
    return envelope({"loan": loan}, "Note added")


# === Queries ===


@router.get("")
def list_loans(
    loan_status: LoanStatus | None = Query(None, alias="status"),
    member_id: int | None = Query(None, alias="memberId"),
    book_id: int | None = Query(None, alias="bookId"),
    overdue: bool = Query(False),
    engine: LoanEngine = Depends(get_engine),
):
    loans = engine.list_loans(
        status=loan_status, member_id=member_id, book_id=book_id, overdue_only=overdue
    )
    return envelope({"loans": loans, "count": len(loans)})


@router.get("/overdue")
def get_overdue(
    days_overdue: int = Query(0, alias="daysOverdue", ge=0),
    engine: LoanEngine = Depends(get_engine),
):
    loans = engine.get_overdue(days_overdue)
    return envelope({"loans": loans, "count": len(loans)})


@router.get("/due-soon")
def get_due_soon(days: int | None = Query(None, ge=0), engine: LoanEngine = Depends(get_engine)):
    loans = engine.get_due_soon(days)
    return envelope({"loans": loans, "count": len(loans)})


@router.get("/statistics")
def get_statistics(engine: LoanEngine = Depends(get_engine)):
    return envelope({"statistics": engine.get_statistics()})


@router.get("/transactions")
def list_transactions(
    member_id: int | None = Query(None, alias="memberId"),
    open_only: bool = Query(False, alias="openOnly"),
    engine: LoanEngine = Depends(get_engine),
):
    groups = engine.list_transaction_groups(member_id, open_only)
    return envelope({"transactions": groups, "count": len(groups)})


@router.get("/transactions/{transaction_id}")
def get_transaction(transaction_id: str, engine: LoanEngine = Depends(get_engine)):
    return envelope({"transaction": engine.get_transaction(transaction_id)})


@router.get("/member/{member_id}")
def get_member_loans(member_id: int, engine: LoanEngine = Depends(get_engine)):
    return envelope({"memberId": member_id, "loans": engine.get_member_loans(member_id)})


@router.get("/member/{member_id}/active")
def get_member_active_loans(member_id: int, engine: LoanEngine = Depends(get_engine)):
    return envelope({"memberId": member_id, "loans": engine.get_member_active_loans(member_id)})


@router.get("/member/{member_id}/history")
def get_member_history(member_id: int, engine: LoanEngine = Depends(get_engine)):
    return envelope({"memberId": member_id, "loans": engine.get_member_history(member_id)})


@router.get("/member/{member_id}/returnable")
def get_returnable_books(member_id: int, engine: LoanEngine = Depends(get_engine)):
    return envelope({"memberId": member_id, "returnableBooks": engine.get_returnable_books(member_id)})


@router.get("/{loan_id}")
def get_loan(loan_id: int, engine: LoanEngine = Depends(get_engine)):
    return envelope({"loan": engine.get_loan_details(loan_id)})
