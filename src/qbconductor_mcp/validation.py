"""Input checks for tool arguments.

Each check raises ValidationError with a field-level message; nothing here
talks to the network.
"""

import re
from collections.abc import Iterable
from datetime import date
from typing import Any

from qbconductor_mcp.exceptions import ValidationError

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
AMOUNT_PATTERN = re.compile(r"^\d+(\.\d{1,2})?$")
REVISION_PATTERN = re.compile(r"^\d+$")
ID_PATTERN = re.compile(r"^[A-Za-z0-9\-_]+$")

MIN_LIMIT = 1
MAX_LIMIT = 100
MAX_BULK_OPERATIONS = 10


def require(value: Any, field: str) -> Any:
    """Reject missing or empty values."""
    if value is None or (isinstance(value, (str, list, dict)) and not value):
        raise ValidationError(f"Validation failed: {field}: Required")
    return value


def validate_id(value: str | None, field: str) -> str:
    """Check a QuickBooks/Conductor record ID."""
    require(value, field)
    if not isinstance(value, str) or not ID_PATTERN.match(value):
        raise ValidationError(f"Validation failed: {field}: Invalid ID '{value}'")
    return value


def validate_date(value: str | None, field: str) -> str | None:
    """Check an optional YYYY-MM-DD date."""
    if value is None:
        return None
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        raise ValidationError(f"Validation failed: {field}: Use YYYY-MM-DD format")
    try:
        date.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(f"Validation failed: {field}: {e}") from e
    return value


def validate_date_range(start_date: str | None, end_date: str | None) -> None:
    """Check both dates and that start is not after end."""
    validate_date(start_date, "start_date")
    validate_date(end_date, "end_date")
    if start_date and end_date and start_date > end_date:
        raise ValidationError(
            "Validation failed: start_date must be before or equal to end_date"
        )


def validate_limit(limit: int) -> int:
    if not isinstance(limit, int) or isinstance(limit, bool) or not (
        MIN_LIMIT <= limit <= MAX_LIMIT
    ):
        raise ValidationError(
            f"Validation failed: limit: Must be between {MIN_LIMIT} and {MAX_LIMIT}"
        )
    return limit


def validate_choice(value: str | None, choices: Iterable[str], field: str) -> str | None:
    """Check an optional enum-like value."""
    if value is None:
        return None
    choices = tuple(choices)
    if value not in choices:
        raise ValidationError(
            f"Validation failed: {field}: Expected one of {', '.join(choices)}, got '{value}'"
        )
    return value


def validate_amount(value: Any, field: str) -> str:
    """Check a decimal-string amount with at most two decimals."""
    if not isinstance(value, str) or not AMOUNT_PATTERN.match(value):
        raise ValidationError(
            f"Validation failed: {field}: Amount must be a decimal string like '125.00'"
        )
    return value


def validate_revision_number(value: str | None) -> str:
    require(value, "revision_number")
    if not isinstance(value, str) or not REVISION_PATTERN.match(value):
        raise ValidationError("Validation failed: revision_number: Must be numeric")
    return value


def validate_applied_bills(
    applied: list[dict[str, Any]] | None,
    required: bool = True,
) -> list[dict[str, Any]] | None:
    """Check ``[{billId, appliedAmount}]`` payment applications."""
    if applied is None and not required:
        return None
    require(applied, "applied_to_bills")
    for i, item in enumerate(applied or []):
        if not isinstance(item, dict):
            raise ValidationError(f"Validation failed: applied_to_bills.{i}: Expected object")
        require(item.get("billId"), f"applied_to_bills.{i}.billId")
        validate_amount(item.get("appliedAmount"), f"applied_to_bills.{i}.appliedAmount")
    return applied


def validate_bill_lines(
    lines: list[dict[str, Any]] | None,
    required: bool = True,
) -> list[dict[str, Any]] | None:
    """Check bill line items; each line needs an amount."""
    if lines is None and not required:
        return None
    require(lines, "lines")
    for i, line in enumerate(lines or []):
        if not isinstance(line, dict):
            raise ValidationError(f"Validation failed: lines.{i}: Expected object")
        if "amount" in line or required:
            validate_amount(line.get("amount"), f"lines.{i}.amount")
        quantity = line.get("quantity")
        if quantity is not None and (not isinstance(quantity, (int, float)) or quantity < 0):
            raise ValidationError(f"Validation failed: lines.{i}.quantity: Must be >= 0")
    return lines
