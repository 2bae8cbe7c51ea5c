"""Response envelopes and human-readable summaries.

Every tool returns ``{success, data?, error?, metadata?}``; ``metadata``
always carries a UTC timestamp.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Callable

from qbconductor_mcp.exceptions import ConductorError

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def format_success_response(
    data: Any,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Wrap a successful result."""
    meta = {k: v for k, v in (metadata or {}).items() if v is not None}
    meta["timestamp"] = _timestamp()
    return {"success": True, "data": data, "metadata": meta}


def format_error_response(
    error: Exception | str,
    end_user_id: str | None = None,
) -> dict[str, Any]:
    """Wrap a failure.

    ConductorError details (kind, status, code, action) are copied into the
    metadata; any other exception contributes only its message.
    """
    meta: dict[str, Any] = {}
    if isinstance(error, ConductorError):
        details = error.to_dict()
        message = details.pop("error")
        meta.update(details)
    else:
        message = str(error)

    logger.error(f"Formatting error response: {message} (end_user_id={end_user_id})")

    if end_user_id:
        meta["end_user_id"] = end_user_id
    meta["timestamp"] = _timestamp()
    return {"success": False, "error": message, "metadata": meta}


def format_paginated_response(
    data: list[dict[str, Any]],
    has_more: bool,
    next_cursor: str | None = None,
    end_user_id: str | None = None,
) -> dict[str, Any]:
    """Wrap one page of a list endpoint."""
    return format_success_response(data, {
        "total_count": len(data),
        "has_more": has_more,
        "next_cursor": next_cursor,
        "end_user_id": end_user_id,
    })


def parse_amount(value: Any) -> float:
    """Parse a decimal-string amount, treating missing values as zero."""
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Unparseable amount {value!r}, counting as 0")
        return 0.0


def format_financial_amount(amount: str | float | int | None) -> str:
    """Format an amount as US dollars, e.g. ``$1,234.50`` or ``-$12.00``."""
    value = parse_amount(amount)
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def format_date(value: str | None) -> str:
    """Format an ISO date as ``January 5, 2024``; other input is returned as-is."""
    if not value:
        return ""
    try:
        parsed = date.fromisoformat(value[:10])
    except ValueError:
        return value
    return f"{parsed.strftime('%B')} {parsed.day}, {parsed.year}"


def format_account_summary(account: dict[str, Any]) -> str:
    balance = format_financial_amount(account.get("balance") or "0")
    status = "Active" if account.get("isActive") else "Inactive"
    name = account.get("fullName") or account.get("name") or "Unknown"
    return f"{name} ({account.get('accountType')}) - Balance: {balance} - Status: {status}"


def format_bill_summary(bill: dict[str, Any]) -> str:
    amount = format_financial_amount(bill.get("totalAmount") or "0")
    status = "Paid" if bill.get("isPaid") else "Unpaid"
    vendor = (bill.get("vendor") or {}).get("fullName") or "Unknown"
    ref = bill.get("refNumber") or bill.get("id")
    return (
        f"Bill {ref} from {vendor} - {amount} - "
        f"{format_date(bill.get('transactionDate'))} - {status}"
    )


def format_payment_summary(payment: dict[str, Any]) -> str:
    amount = format_financial_amount(payment.get("totalAmount") or "0")
    method = "Check" if payment.get("objectType") == "qbd_bill_check_payment" else "Credit Card"
    payee = (payment.get("payee") or {}).get("fullName") or "Unknown"
    ref = payment.get("refNumber") or payment.get("id")
    return (
        f"{method} Payment {ref} to {payee} - {amount} - "
        f"{format_date(payment.get('transactionDate'))}"
    )


def format_vendor_spending(
    vendor: str,
    total_spent: float,
    bill_count: int,
    payment_count: int,
) -> str:
    amount = format_financial_amount(total_spent)
    return f"{vendor}: {amount} total ({bill_count} bills, {payment_count} payments)"


def format_list_response(
    items: list[Any],
    formatter: Callable[[Any], str],
    title: str = "Results",
) -> str:
    """Render items as a numbered list under a title."""
    if not items:
        return f"No {title.lower()} found."
    lines = [f"{i}. {formatter(item)}" for i, item in enumerate(items, start=1)]
    return f"{title} ({len(items)} found):\n" + "\n".join(lines)
