"""
Request payload normalization.

Desk clients, the self-service kiosk and QR codes printed by older versions
send the same operations in several shapes. Each ``normalize_*`` function
maps every accepted shape onto one canonical request model from
``models.loan`` and raises ``InvalidPayload`` for anything else, so the loan
engine only ever sees canonical input.

Accepted checkout shapes::

    {"memberId": 1, "bookCopyId": 7, "durationDays": 7}
    {"memberId": 1, "bookCopyIds": [7, 8]}
    {"member_id": 1, "book_copies": [7, 8],
     "checkout_date": "2024-01-01", "due_date": "2024-01-15"}

Accepted QR return shapes (dict or JSON string)::

    {"loansIds": [3, 4], "memberId": 1, "transactionId": "LOAN-..."}
    {"loanIds": [3]} / {"loan_ids": [3]} / {"loans": [3, {"id": 4}]}
    {"loanId": 3, "member_id": 1, "skipMemberCheck": true}
"""

import json
import math
from datetime import date, datetime
from typing import Any

import pydantic

from .errors import InvalidPayload
from .models.loan import (
    BatchReturnRequest,
    CheckoutRequest,
    PayFineRequest,
    QRReturnRequest,
    RenewRequest,
    ReturnCondition,
    ReturnItem,
)

Payload = dict[str, Any] | str | bytes | None

_QR_LOAN_KEYS = ("loansIds", "loanIds", "loan_ids", "loans")
_QR_SINGLE_LOAN_KEYS = ("loanId", "loan_id")


def _as_dict(payload: Payload) -> dict[str, Any]:
    if payload is None:
        return {}
    if isinstance(payload, bytes | str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise InvalidPayload(f"Payload is not valid JSON: {e.msg}") from e
    if not isinstance(payload, dict):
        raise InvalidPayload("Payload must be a JSON object")
    return payload


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _as_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise InvalidPayload(f"{field} must be an integer, got {value!r}")
    if isinstance(value, dict):
        value = _first(value, "id", "loanId", "loan_id", "bookCopyId", "book_copy_id")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InvalidPayload(f"{field} must be an integer, got {value!r}") from e


def _as_id_list(value: Any, field: str) -> list[int]:
    if value is None:
        return []
    if not isinstance(value, list | tuple):
        value = [value]
    ids: list[int] = []
    for item in value:
        item_id = _as_int(item, field)
        if item_id not in ids:
            ids.append(item_id)
    return ids


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _parse_date(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as e:
        raise InvalidPayload(f"{field} is not an ISO date: {value!r}") from e
    return parsed.replace(tzinfo=None)


def _build(model: type[pydantic.BaseModel], **fields: Any):
    try:
        return model(**fields)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}" for err in e.errors()
        )
        raise InvalidPayload(f"Invalid request: {problems}") from e


def parse_condition(value: Any) -> ReturnCondition:
    """Case-insensitive ``ReturnCondition`` lookup; None means Good."""
    if value is None or value == "":
        return ReturnCondition.GOOD
    if isinstance(value, ReturnCondition):
        return value
    for condition in ReturnCondition:
        if str(value).strip().lower() == condition.value.lower():
            return condition
    allowed = ", ".join(c.value for c in ReturnCondition)
    raise InvalidPayload(f"Unknown return condition {value!r}; expected one of {allowed}")


def normalize_checkout(payload: Payload) -> CheckoutRequest:
    data = _as_dict(payload)
    duration_days = None

    if data.get("memberId") is not None:
        member_id = _as_int(data["memberId"], "memberId")
        if data.get("bookCopyId") is not None:
            copy_ids = [_as_int(data["bookCopyId"], "bookCopyId")]
        else:
            copy_ids = _as_id_list(data.get("bookCopyIds"), "bookCopyIds")
        if data.get("durationDays"):
            duration_days = _as_int(data["durationDays"], "durationDays")
    elif data.get("member_id") is not None:
        member_id = _as_int(data["member_id"], "member_id")
        copy_ids = _as_id_list(_first(data, "book_copies", "book_copy_ids", "copy_ids"), "book_copies")
        if data.get("checkout_date") and data.get("due_date"):
            start = _parse_date(data["checkout_date"], "checkout_date")
            end = _parse_date(data["due_date"], "due_date")
            duration_days = math.ceil(abs((end - start).total_seconds()) / 86400) or None
        elif data.get("duration_days"):
            duration_days = _as_int(data["duration_days"], "duration_days")
    else:
        raise InvalidPayload("Member ID is required")

    if not copy_ids:
        raise InvalidPayload("At least one book copy ID is required")

    return _build(CheckoutRequest, member_id=member_id, copy_ids=copy_ids, duration_days=duration_days)


def normalize_return_item(data: dict[str, Any], loan_id: Any = None) -> ReturnItem:
    loan_id = loan_id if loan_id is not None else _first(data, "loanId", "loan_id", "id")
    if loan_id is None:
        raise InvalidPayload("Each return item must have a loanId")
    return _build(
        ReturnItem,
        loan_id=_as_int(loan_id, "loanId"),
        condition=parse_condition(_first(data, "returnCondition", "return_condition", "condition")),
        note=_first(data, "note", "notes"),
    )


def normalize_single_return(loan_id: int, payload: Payload) -> ReturnItem:
    return normalize_return_item(_as_dict(payload), loan_id=loan_id)


def normalize_batch_return(payload: Payload | list) -> BatchReturnRequest:
    items = payload if isinstance(payload, list) else _as_dict(payload).get("returns")
    if not isinstance(items, list) or not items:
        raise InvalidPayload("No return items provided")

    returns = []
    for item in items:
        if isinstance(item, dict):
            returns.append(normalize_return_item(item))
        else:
            returns.append(_build(ReturnItem, loan_id=_as_int(item, "loanId")))
    return BatchReturnRequest(returns=returns)


def normalize_qr_return(payload: Payload) -> QRReturnRequest:
    data = _as_dict(payload)

    loan_ids: list[int] = []
    for key in _QR_LOAN_KEYS:
        if data.get(key) is not None:
            loan_ids = _as_id_list(data[key], key)
            break
    if not loan_ids:
        single = _first(data, *_QR_SINGLE_LOAN_KEYS)
        if single is not None:
            loan_ids = [_as_int(single, "loanId")]
    if not loan_ids:
        raise InvalidPayload("No loan IDs found in QR code data")

    member_id = _first(data, "memberId", "member_id")
    return _build(
        QRReturnRequest,
        loan_ids=loan_ids,
        member_id=_as_int(member_id, "memberId") if member_id is not None else None,
        skip_member_check=_as_bool(_first(data, "skipMemberCheck", "skip_member_check")),
        transaction_id=_first(data, "transactionId", "transaction_id"),
    )


def normalize_renewal(payload: Payload) -> RenewRequest:
    data = _as_dict(payload)
    extension = _first(data, "extensionDays", "extension_days")
    return _build(
        RenewRequest,
        extension_days=_as_int(extension, "extensionDays") if extension is not None else None,
    )


def normalize_fine_payment(payload: Payload) -> PayFineRequest:
    data = _as_dict(payload)
    amount = data.get("amount")
    if amount is None:
        raise InvalidPayload("Payment amount is required")
    try:
        amount = float(amount)
    except (TypeError, ValueError) as e:
        raise InvalidPayload(f"Payment amount must be a number, got {amount!r}") from e
    return _build(PayFineRequest, amount=amount)
