"""Data models for the Conductor MCP server.

Dataclasses for upstream pages, bulk operations and report results. Upstream
records themselves stay plain dictionaries as returned by the API.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from qbconductor_mcp.formatting import format_financial_amount


@dataclass
class Page:
    """One page of a cursor-paginated list endpoint.

    Args:
        data: Records on this page.
        has_more: Whether the upstream reports further pages.
        next_cursor: Cursor for the next page (None on the last page).
    """

    data: list[dict[str, Any]] = field(default_factory=list)
    has_more: bool = False
    next_cursor: str | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Page":
        """Create a Page from the upstream ``{data, hasMore, nextCursor}`` body."""
        data = payload.get("data")
        return cls(
            data=data if isinstance(data, list) else [],
            has_more=bool(payload.get("hasMore", False)),
            next_cursor=payload.get("nextCursor") or None,
        )


# =============================================================================
# Bulk operations
# =============================================================================


class BatchOperationType(str, Enum):
    """Operations accepted by the bulk runner."""

    CREATE_BILL = "create_bill"
    UPDATE_BILL = "update_bill"
    CREATE_PAYMENT = "create_payment"
    UPDATE_PAYMENT = "update_payment"


@dataclass
class BatchOperation:
    """A single bulk operation.

    Args:
        type: Operation type.
        data: Operation payload, forwarded to the upstream API.
    """

    type: BatchOperationType
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "BatchOperation":
        """Create from a ``{type, data}`` dictionary.

        Raises:
            ValueError: If the type is not a known operation.
        """
        return cls(type=BatchOperationType(raw.get("type")), data=dict(raw.get("data") or {}))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"type": self.type.value, "data": self.data}


@dataclass
class BatchResult:
    """Outcome of one bulk operation."""

    operation: BatchOperation
    success: bool
    result: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        out: dict[str, Any] = {
            "operation": self.operation.to_dict(),
            "success": self.success,
        }
        if self.success:
            out["result"] = self.result
        else:
            out["error"] = self.error
        return out


@dataclass
class BatchReport:
    """Ordered results of a bulk run with success/failure counts."""

    results: list[BatchResult] = field(default_factory=list)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def summary(self) -> dict[str, int]:
        return {
            "total": len(self.results),
            "successful": self.successful,
            "failed": self.failed,
        }


# =============================================================================
# Reporting
# =============================================================================


@dataclass
class FinancialSummary:
    """Account totals grouped by account type.

    Args:
        total_accounts: Number of accounts summarized.
        accounts_by_type: Account count per type.
        balances_by_type: Summed balance per type.
        total_balance: Sum of all balances.
        active_accounts: Number of active accounts.
        inactive_accounts: Number of inactive accounts.
        start_date: Requested start date (echoed).
        end_date: Requested end date (echoed).
    """

    total_accounts: int = 0
    accounts_by_type: dict[str, int] = field(default_factory=dict)
    balances_by_type: dict[str, float] = field(default_factory=dict)
    total_balance: float = 0.0
    active_accounts: int = 0
    inactive_accounts: int = 0
    start_date: str | None = None
    end_date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "total_accounts": self.total_accounts,
            "accounts_by_type": self.accounts_by_type,
            "balances_by_type": {k: round(v, 2) for k, v in self.balances_by_type.items()},
            "balances_by_type_formatted": {
                k: format_financial_amount(v) for k, v in self.balances_by_type.items()
            },
            "total_balance": round(self.total_balance, 2),
            "total_balance_formatted": format_financial_amount(self.total_balance),
            "active_accounts": self.active_accounts,
            "inactive_accounts": self.inactive_accounts,
            "date_range": {"start_date": self.start_date, "end_date": self.end_date},
        }


@dataclass
class VendorSpending:
    """Spending totals for a single vendor.

    Args:
        vendor_id: QuickBooks vendor ID.
        vendor_name: Vendor display name.
        total_billed: Sum of bill totals.
        total_paid: Sum of bill payments to this vendor.
        bill_count: Number of bills.
        payment_count: Number of payments.
        outstanding_balance: Sum of open balances of unpaid bills.
    """

    vendor_id: str | None
    vendor_name: str
    total_billed: float = 0.0
    total_paid: float = 0.0
    bill_count: int = 0
    payment_count: int = 0
    outstanding_balance: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "vendor_id": self.vendor_id,
            "vendor_name": self.vendor_name,
            "total_billed": round(self.total_billed, 2),
            "total_paid": round(self.total_paid, 2),
            "bill_count": self.bill_count,
            "payment_count": self.payment_count,
            "outstanding_balance": round(self.outstanding_balance, 2),
            "total_billed_formatted": format_financial_amount(self.total_billed),
            "total_paid_formatted": format_financial_amount(self.total_paid),
            "outstanding_balance_formatted": format_financial_amount(
                self.outstanding_balance
            ),
        }
