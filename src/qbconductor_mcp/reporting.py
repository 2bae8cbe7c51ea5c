"""Financial summary and vendor spending reports.

Both reports drain complete paginated datasets and reduce them client-side.
Amounts arrive as decimal strings and are summed as floats.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any

from qbconductor_mcp import endpoints
from qbconductor_mcp.client import ConductorClient
from qbconductor_mcp.formatting import parse_amount
from qbconductor_mcp.models import FinancialSummary, VendorSpending

logger = logging.getLogger(__name__)


def summarize_accounts(
    accounts: list[dict[str, Any]],
    start_date: str | None = None,
    end_date: str | None = None,
) -> FinancialSummary:
    """Aggregate accounts by type in a single pass.

    Args:
        accounts: Account records.
        start_date: Requested start date, echoed in the summary.
        end_date: Requested end date, echoed in the summary.

    Returns:
        FinancialSummary with counts and balances per type.
    """
    summary = FinancialSummary(
        total_accounts=len(accounts),
        start_date=start_date,
        end_date=end_date,
    )

    for account in accounts:
        account_type = account.get("accountType") or "unknown"
        balance = parse_amount(account.get("balance"))

        summary.accounts_by_type[account_type] = summary.accounts_by_type.get(account_type, 0) + 1
        summary.balances_by_type[account_type] = (
            summary.balances_by_type.get(account_type, 0.0) + balance
        )
        summary.total_balance += balance

        if account.get("isActive"):
            summary.active_accounts += 1
        else:
            summary.inactive_accounts += 1

    return summary


def analyze_vendor_spending(
    bills: list[dict[str, Any]],
    check_payments: list[dict[str, Any]] | None = None,
    credit_card_payments: list[dict[str, Any]] | None = None,
) -> list[VendorSpending]:
    """Combine bills and payments into per-vendor totals.

    Vendors are discovered from bills only; payments to a payee with no bill
    in the data set are not represented. Outstanding balance is the sum of
    ``openBalance`` over unpaid bills.

    Returns:
        List of VendorSpending sorted by total billed descending.
    """
    vendors: dict[str | None, VendorSpending] = {}

    for bill in bills:
        vendor = bill.get("vendor") or {}
        vendor_id = vendor.get("id")
        spending = vendors.get(vendor_id)
        if spending is None:
            spending = VendorSpending(
                vendor_id=vendor_id,
                vendor_name=vendor.get("fullName") or "Unknown Vendor",
            )
            vendors[vendor_id] = spending

        spending.total_billed += parse_amount(bill.get("totalAmount"))
        spending.bill_count += 1
        if not bill.get("isPaid"):
            spending.outstanding_balance += parse_amount(bill.get("openBalance"))

    for payment in [*(check_payments or []), *(credit_card_payments or [])]:
        payee_id = (payment.get("payee") or {}).get("id")
        spending = vendors.get(payee_id)
        if spending is None:
            continue
        spending.total_paid += parse_amount(payment.get("totalAmount"))
        spending.payment_count += 1

    results = list(vendors.values())
    results.sort(key=lambda v: v.total_billed, reverse=True)
    return results


def _date_params(start_date: str | None, end_date: str | None) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if start_date:
        params["transactionDateFrom"] = start_date
    if end_date:
        params["transactionDateTo"] = end_date
    return params


async def generate_financial_summary(
    client: ConductorClient,
    account_types: list[str] | None = None,
    include_inactive: bool = False,
    start_date: str | None = None,
    end_date: str | None = None,
) -> FinancialSummary:
    """Fetch all accounts (optionally filtered by type) and summarize them."""
    params: dict[str, Any] = {"includeInactive": include_inactive}
    if account_types:
        params["accountType"] = list(account_types)

    accounts = await client.get_all_pages(endpoints.ACCOUNTS, params)
    return summarize_accounts(accounts, start_date, end_date)


async def _gather_or_cancel(*coros: Awaitable[Any]) -> list[Any]:
    """Run awaitables concurrently; on the first failure cancel the rest.

    The remaining tasks are awaited after cancellation so none outlives
    the caller's client.
    """
    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def get_vendor_spending_analysis(
    client: ConductorClient,
    vendor_id: str | None = None,
    include_payments: bool = True,
    start_date: str | None = None,
    end_date: str | None = None,
) -> tuple[list[VendorSpending], dict[str, int]]:
    """Fetch bills and payments concurrently and analyze spending by vendor.

    Returns:
        Tuple of (vendor results, counts of bills and payments fetched).
    """
    bill_params = _date_params(start_date, end_date)
    payment_params = _date_params(start_date, end_date)
    if vendor_id:
        bill_params["vendorId"] = vendor_id
        payment_params["payeeId"] = vendor_id

    async def no_payments() -> list[dict[str, Any]]:
        return []

    bills, check_payments, credit_card_payments = await _gather_or_cancel(
        client.get_all_pages(endpoints.BILLS, bill_params),
        client.get_all_pages(endpoints.BILL_CHECK_PAYMENTS, payment_params)
        if include_payments else no_payments(),
        client.get_all_pages(endpoints.BILL_CREDIT_CARD_PAYMENTS, payment_params)
        if include_payments else no_payments(),
    )

    results = analyze_vendor_spending(bills, check_payments, credit_card_payments)
    counts = {
        "total_bills": len(bills),
        "total_payments": len(check_payments) + len(credit_card_payments),
    }
    logger.info(
        f"Vendor spending analysis: {len(results)} vendors from {counts['total_bills']} bills "
        f"and {counts['total_payments']} payments"
    )
    return results, counts
