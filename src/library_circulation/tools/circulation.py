"""
Circulation tools for the library circulation server.

The tool bridge mirrors the desk client's IPC channels one to one
(``loans:borrowBooks`` becomes ``loans_borrow_books`` and so on). Every
handler:

1. normalizes its arguments through ``payloads`` (all historical shapes)
2. calls the same ``LoanEngine`` the HTTP API uses
3. answers ``{"content": [...], "data": {...}}`` on success or
   ``{"isError": True, "content": [...]}`` on failure

Handlers are closures over an explicit engine, built by
``build_circulation_tools``.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field

from ..errors import ErrorKind, LibraryError
from ..models.loan import BatchReturnRequest, CheckoutRequest, QRReturnRequest, ReturnItem
from ..observability.decorators import trace_tool
from ..payloads import (
    normalize_batch_return,
    normalize_checkout,
    normalize_fine_payment,
    normalize_qr_return,
    normalize_renewal,
    normalize_single_return,
)
from ..services.loan_engine import LoanEngine

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


# =============================================================================
# INPUT SCHEMAS
# =============================================================================


class ReturnBookInput(ReturnItem):
    """Return one loan; the rest of its transaction group comes back with it."""


class RenewInput(BaseModel):
    loan_id: int = Field(..., gt=0)
    extension_days: int | None = Field(None, ge=1, le=365)


class PayFineInput(BaseModel):
    loan_id: int = Field(..., gt=0)
    amount: float = Field(..., gt=0)


class OverdueInput(BaseModel):
    days_overdue: int = Field(default=0, ge=0, description="Only loans at least this many days late")


class TransactionsInput(BaseModel):
    member_id: int | None = None
    open_only: bool = False


# =============================================================================
# RESPONSES
# =============================================================================


def _ok(text: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": text}], "data": data}


def _error(text: str, kind: ErrorKind = ErrorKind.SYSTEM, code: str | None = None) -> dict[str, Any]:
    return {
        "isError": True,
        "content": [{"type": "text", "text": text}],
        "data": {"error": text, "kind": kind.value, "code": code or "SystemError"},
    }


def _dump(models) -> list[dict[str, Any]]:
    return [model.model_dump(mode="json") for model in models]


def _guarded(tool_name: str, operation: Callable[[dict[str, Any]], dict[str, Any]]) -> Handler:
    """Wrap a synchronous operation with the tool error contract."""

    @trace_tool(tool_name)
    async def handler(arguments: dict[str, Any]) -> dict[str, Any]:
        try:
            return operation(arguments or {})
        except LibraryError as e:
            if e.kind == ErrorKind.SYSTEM:
                logger.error("%s failed: %s", tool_name, e.message)
            else:
                logger.info("%s refused: %s", tool_name, e.message)
            return _error(e.message, e.kind, e.code)
        except ValueError as e:
            # pydantic.ValidationError is a ValueError
            logger.info("%s rejected arguments: %s", tool_name, e)
            return _error(f"Invalid arguments: {e}", ErrorKind.VALIDATION, "InvalidPayload")
        except Exception as e:
            logger.exception("Unexpected error in %s tool", tool_name)
            return _error(f"An unexpected error occurred: {e!s}")

    handler.__name__ = tool_name
    return handler


# =============================================================================
# TOOL FACTORY
# =============================================================================


def build_circulation_tools(engine: LoanEngine) -> list[dict[str, Any]]:
    """Tool definitions (name, description, inputSchema, handler) bound to ``engine``."""

    def borrow_books(arguments: dict[str, Any]) -> dict[str, Any]:
        request = normalize_checkout(arguments)
        result = engine.checkout(request.member_id, request.copy_ids, request.duration_days)
        text = f"Checked out {len(result.loans)} book(s) to member {result.member_id}"
        if result.errors:
            text += f"; {len(result.errors)} could not be checked out: " + "; ".join(
                f"copy {err.book_copy_id}: {err.error}" for err in result.errors
            )
        if not result.loans:
            failure = _error(text, ErrorKind.CONFLICT, "CheckoutFailed")
            return {**failure, "data": result.model_dump(mode="json")}
        return _ok(text, result.model_dump(mode="json"))

    def return_books(arguments: dict[str, Any]) -> dict[str, Any]:
        request = normalize_batch_return(arguments)
        result = engine.return_loans(request.returns)
        text = f"Returned {len(result.returned)} book(s)"
        if result.errors:
            text += f"; {len(result.errors)} failed"
        return _ok(text, result.model_dump(mode="json"))

    def return_books_via_qr_code(arguments: dict[str, Any]) -> dict[str, Any]:
        payload = arguments.get("qrData", arguments) if isinstance(arguments, dict) else arguments
        result = engine.return_via_qr(normalize_qr_return(payload))
        return _ok(result.message, result.model_dump(mode="json"))

    def return_book(arguments: dict[str, Any]) -> dict[str, Any]:
        loan_id = arguments.get("loan_id", arguments.get("loanId"))
        if loan_id is None:
            return _error("loan_id is required", ErrorKind.VALIDATION, "InvalidPayload")
        item = normalize_single_return(loan_id, arguments)
        result = engine.return_loan(item.loan_id, item.condition, item.note)
        text = f"Returned {len(result.returned)} book(s)"
        if result.total_fine:
            text += f"; fine due: {result.total_fine:.2f}"
        return _ok(text, result.model_dump(mode="json"))

    def renew(arguments: dict[str, Any]) -> dict[str, Any]:
        loan_id = arguments.get("loan_id", arguments.get("loanId"))
        if loan_id is None:
            return _error("loan_id is required", ErrorKind.VALIDATION, "InvalidPayload")
        request = normalize_renewal(arguments)
        loan = engine.renew(int(loan_id), request.extension_days)
        return _ok(
            f"Loan {loan.id} renewed until {loan.due_date:%B %d, %Y}",
            {"loan": loan.model_dump(mode="json")},
        )

    def pay_fine(arguments: dict[str, Any]) -> dict[str, Any]:
        loan_id = arguments.get("loan_id", arguments.get("loanId"))
        if loan_id is None:
            return _error("loan_id is required", ErrorKind.VALIDATION, "InvalidPayload")
        request = normalize_fine_payment(arguments)
        loan = engine.pay_fine(int(loan_id), request.amount)
        return _ok(
            f"Fine of {loan.fine_amount:.2f} paid on loan {loan.id}",
            {"loan": loan.model_dump(mode="json")},
        )

    def get_overdue(arguments: dict[str, Any]) -> dict[str, Any]:
        params = OverdueInput(days_overdue=arguments.get("days_overdue", arguments.get("daysOverdue", 0)))
        loans = engine.get_overdue(params.days_overdue)
        return _ok(f"{len(loans)} overdue loan(s)", {"loans": _dump(loans)})

    def get_statistics(arguments: dict[str, Any]) -> dict[str, Any]:  # noqa: ARG001
        stats = engine.get_statistics()
        return _ok(
            f"{stats.active_loans} active loans, {stats.overdue_loans} overdue",
            {"statistics": stats.model_dump(mode="json")},
        )

    def get_transactions(arguments: dict[str, Any]) -> dict[str, Any]:
        params = TransactionsInput(
            member_id=arguments.get("member_id", arguments.get("memberId")),
            open_only=arguments.get("open_only", arguments.get("openOnly", False)),
        )
        groups = engine.list_transaction_groups(params.member_id, params.open_only)
        return _ok(f"{len(groups)} transaction(s)", {"transactions": _dump(groups)})

    definitions = [
        (
            "loans_borrow_books",
            "Check out one or more book copies to a member. All copies share one "
            "transaction id; copies that cannot be lent are reported individually.",
            CheckoutRequest,
            borrow_books,
        ),
        (
            "loans_return_books",
            "Return several loans at once. Fails without changes if any loan id is "
            "unknown; otherwise per-loan failures are reported alongside successes.",
            BatchReturnRequest,
            return_books,
        ),
        (
            "loans_return_books_via_qr_code",
            "Return the loans encoded in a scanned QR code. Loans of other members "
            "are dropped and already returned loans are skipped.",
            QRReturnRequest,
            return_books_via_qr_code,
        ),
        (
            "loans_return_book",
            "Return one loan with its condition. Other books borrowed in the same "
            "transaction are returned with it. Fines are computed on return.",
            ReturnBookInput,
            return_book,
        ),
        ("loans_renew", "Extend the due date of an open, not yet overdue loan.", RenewInput, renew),
        ("loans_pay_fine", "Record full payment of a returned loan's fine.", PayFineInput, pay_fine),
        ("loans_get_overdue", "List open loans past their due date.", OverdueInput, get_overdue),
        ("loans_get_statistics", "Circulation statistics for the desk dashboard.", None, get_statistics),
        (
            "loans_get_transactions",
            "Loans grouped by checkout transaction, newest first.",
            TransactionsInput,
            get_transactions,
        ),
    ]

    return [
        {
            "name": name,
            "description": description,
            "inputSchema": schema.model_json_schema() if schema else {"type": "object", "properties": {}},
            "handler": _guarded(name, operation),
        }
        for name, description, schema, operation in definitions
    ]
