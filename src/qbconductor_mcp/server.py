"""MCP server for QuickBooks Desktop accounting through the Conductor API.

This module defines the FastMCP server instance and its tools:
- End-users: create_end_user, list_end_users, get_end_user, delete_end_user
- Connection: create_auth_session, check_connection_status
- Accounts: list_accounts, get_account, create_account, update_account
- Bills: list_bills, get_bill, create_bill, update_bill
- Bill payments: list_bill_check_payments, list_bill_credit_card_payments,
  get_payment, create_bill_check_payment, create_bill_credit_card_payment,
  update_payment, delete_payment
- Reporting: get_account_tax_lines, generate_financial_summary,
  get_vendor_spending_analysis
- Advanced: passthrough_request, bulk_operations

Every tool returns the JSON text of a ``{success, data, error, metadata}``
envelope. Tools named in DISABLED_TOOLS are not registered.
"""

import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

from qbconductor_mcp import handlers
from qbconductor_mcp.auth import load_secret_key
from qbconductor_mcp.cache import Cache
from qbconductor_mcp.config import Settings, disabled_tools_from_env, log_level_from_env
from qbconductor_mcp.endpoints import PaymentType
from qbconductor_mcp.exceptions import ConductorError, to_domain_error
from qbconductor_mcp.formatting import format_error_response
from qbconductor_mcp.handlers import ToolContext

load_dotenv()

# Configure logging to stderr (not stdout - would corrupt MCP protocol)
logging.basicConfig(
    level=log_level_from_env(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)

# Lazy-initialized context (created on first tool call)
_context: ToolContext | None = None


async def get_context() -> ToolContext:
    """Get or create the shared ToolContext.

    The secret key comes from the environment, or from the credential store
    when CONDUCTOR_SECRET_KEY is unset.

    Raises:
        ValueError: If required configuration is missing.
    """
    global _context
    if _context is None:
        try:
            settings = Settings.from_env()
        except ValueError:
            settings = Settings.from_env(secret_key=await load_secret_key())
        cache = Cache(default_ttl=settings.cache_ttl_seconds, max_size=settings.cache_max_size)
        _context = ToolContext(settings=settings, cache=cache)
        logger.info(
            f"Conductor client configured for {settings.api_base_url} "
            f"(default end-user {settings.default_end_user_id})"
        )
    return _context


def set_context(context: ToolContext | None) -> None:
    """Replace the shared context (None resets lazy initialization)."""
    global _context
    _context = context


async def _run(
    handler: Callable[..., Awaitable[dict[str, Any]]],
    **kwargs: Any,
) -> str:
    """Run a handler and serialize its envelope; failures become error envelopes."""
    try:
        context = await get_context()
        envelope = await handler(context, **kwargs)
    except ConductorError as e:
        logger.error(f"Error in {handler.__name__}: {e.message}")
        envelope = format_error_response(e, kwargs.get("end_user_id"))
    except Exception as e:
        logger.error(f"Unexpected error in {handler.__name__}: {e}")
        envelope = format_error_response(to_domain_error(e), kwargs.get("end_user_id"))
    return json.dumps(envelope, indent=2, default=str)


# =============================================================================
# End-users and connection
# =============================================================================


async def create_end_user(
    company_name: str | None = None,
    source_id: str | None = None,
    email: str | None = None,
) -> str:
    """Create a new end-user (one of your customers) in Conductor.

    Args:
        company_name: The end-user's company name.
        source_id: Your own identifier for this end-user.
        email: Contact email of the end-user.

    Returns:
        JSON envelope with the created end-user, including its ID.
    """
    return await _run(
        handlers.create_end_user,
        company_name=company_name,
        source_id=source_id,
        email=email,
    )


async def list_end_users(limit: int = 50, cursor: str | None = None) -> str:
    """List Conductor end-users.

    Args:
        limit: Page size (1-100, default 50).
        cursor: Cursor from a previous page's next_cursor.
    """
    return await _run(handlers.list_end_users, limit=limit, cursor=cursor)


async def get_end_user(end_user_id: str) -> str:
    """Get one end-user, including its QuickBooks Desktop integration connections."""
    return await _run(handlers.get_end_user, end_user_id=end_user_id)


async def delete_end_user(end_user_id: str) -> str:
    """Delete an end-user and all of its integration connections."""
    return await _run(handlers.delete_end_user, end_user_id=end_user_id)


async def create_auth_session(end_user_id: str, redirect_url: str | None = None) -> str:
    """Create an auth session so an end-user can connect QuickBooks Desktop.

    Args:
        end_user_id: End-user that will connect.
        redirect_url: Where to send the user after connecting.

    Returns:
        JSON envelope with the session, including the authentication URL.
    """
    return await _run(
        handlers.create_auth_session,
        end_user_id=end_user_id,
        redirect_url=redirect_url,
    )


async def check_connection_status(end_user_id: str | None = None) -> str:
    """Check whether QuickBooks Desktop is connected and responding for an end-user.

    A disconnected desktop is reported as data (connected: false), not as an error.
    """
    return await _run(handlers.check_connection_status, end_user_id=end_user_id)


# =============================================================================
# Accounts
# =============================================================================


async def list_accounts(
    end_user_id: str | None = None,
    account_type: str | None = None,
    is_active: bool | None = None,
    name_contains: str | None = None,
    include_inactive: bool = False,
    limit: int = 50,
    cursor: str | None = None,
) -> str:
    """List chart-of-accounts entries from QuickBooks Desktop.

    Args:
        end_user_id: End-user to act on. Uses the default end-user if omitted.
        account_type: Filter by type (e.g., 'bank', 'expense', 'accounts_payable').
        is_active: Filter on active status.
        name_contains: Filter on account name.
        include_inactive: Include inactive accounts.
        limit: Page size (1-100, default 50).
        cursor: Cursor from a previous page's next_cursor.
    """
    return await _run(
        handlers.list_accounts,
        end_user_id=end_user_id,
        account_type=account_type,
        is_active=is_active,
        name_contains=name_contains,
        include_inactive=include_inactive,
        limit=limit,
        cursor=cursor,
    )


async def get_account(account_id: str, end_user_id: str | None = None) -> str:
    """Get one account by ID, with a one-line summary."""
    return await _run(handlers.get_account, account_id=account_id, end_user_id=end_user_id)


async def create_account(
    name: str,
    account_type: str,
    end_user_id: str | None = None,
    description: str | None = None,
    account_number: str | None = None,
    parent_id: str | None = None,
    is_active: bool = True,
) -> str:
    """Create an account in the chart of accounts.

    Args:
        name: Account name.
        account_type: Account type (e.g., 'bank', 'expense').
        end_user_id: End-user to act on. Uses the default end-user if omitted.
        description: Account description.
        account_number: Account number.
        parent_id: Parent account ID for sub-accounts.
        is_active: Whether the account is active.
    """
    return await _run(
        handlers.create_account,
        name=name,
        account_type=account_type,
        end_user_id=end_user_id,
        description=description,
        account_number=account_number,
        parent_id=parent_id,
        is_active=is_active,
    )


async def update_account(
    account_id: str,
    revision_number: str,
    end_user_id: str | None = None,
    name: str | None = None,
    description: str | None = None,
    account_number: str | None = None,
    is_active: bool | None = None,
) -> str:
    """Update an account. The revision number must match the current record.

    Args:
        account_id: Account to update.
        revision_number: Current revision number of the account.
        end_user_id: End-user to act on. Uses the default end-user if omitted.
        name: New name.
        description: New description.
        account_number: New account number.
        is_active: New active status.
    """
    return await _run(
        handlers.update_account,
        account_id=account_id,
        revision_number=revision_number,
        end_user_id=end_user_id,
        name=name,
        description=description,
        account_number=account_number,
        is_active=is_active,
    )


# =============================================================================
# Bills
# =============================================================================


async def list_bills(
    end_user_id: str | None = None,
    vendor_id: str | None = None,
    vendor_name: str | None = None,
    is_paid: bool | None = None,
    ref_number: str | None = None,
    memo: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    limit: int = 50,
    cursor: str | None = None,
) -> str:
    """List vendor bills.

    Args:
        end_user_id: End-user to act on. Uses the default end-user if omitted.
        vendor_id: Filter by vendor ID.
        vendor_name: Filter by vendor name.
        is_paid: Filter on paid status.
        ref_number: Filter by reference number.
        memo: Filter by memo.
        start_date: Earliest transaction date (YYYY-MM-DD).
        end_date: Latest transaction date (YYYY-MM-DD).
        limit: Page size (1-100, default 50).
        cursor: Cursor from a previous page's next_cursor.
    """
    return await _run(
        handlers.list_bills,
        end_user_id=end_user_id,
        vendor_id=vendor_id,
        vendor_name=vendor_name,
        is_paid=is_paid,
        ref_number=ref_number,
        memo=memo,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        cursor=cursor,
    )


async def get_bill(bill_id: str, end_user_id: str | None = None) -> str:
    """Get one bill by ID, with a one-line summary."""
    return await _run(handlers.get_bill, bill_id=bill_id, end_user_id=end_user_id)


async def create_bill(
    vendor_id: str,
    transaction_date: str,
    lines: list[dict[str, Any]],
    end_user_id: str | None = None,
    due_date: str | None = None,
    ref_number: str | None = None,
    memo: str | None = None,
) -> str:
    """Create a vendor bill.

    Args:
        vendor_id: Vendor the bill is from.
        transaction_date: Bill date (YYYY-MM-DD).
        lines: Expense lines, e.g. [{"accountId": "...", "amount": "125.00", "memo": "..."}].
        end_user_id: End-user to act on. Uses the default end-user if omitted.
        due_date: Due date (YYYY-MM-DD).
        ref_number: Reference number.
        memo: Memo.
    """
    return await _run(
        handlers.create_bill,
        vendor_id=vendor_id,
        transaction_date=transaction_date,
        lines=lines,
        end_user_id=end_user_id,
        due_date=due_date,
        ref_number=ref_number,
        memo=memo,
    )


async def update_bill(
    bill_id: str,
    revision_number: str,
    end_user_id: str | None = None,
    vendor_id: str | None = None,
    transaction_date: str | None = None,
    due_date: str | None = None,
    ref_number: str | None = None,
    memo: str | None = None,
    lines: list[dict[str, Any]] | None = None,
) -> str:
    """Update a bill. The revision number must match the current record."""
    return await _run(
        handlers.update_bill,
        bill_id=bill_id,
        revision_number=revision_number,
        end_user_id=end_user_id,
        vendor_id=vendor_id,
        transaction_date=transaction_date,
        due_date=due_date,
        ref_number=ref_number,
        memo=memo,
        lines=lines,
    )


# =============================================================================
# Bill payments
# =============================================================================


async def list_bill_check_payments(
    end_user_id: str | None = None,
    payee_id: str | None = None,
    account_id: str | None = None,
    ref_number: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    limit: int = 50,
    cursor: str | None = None,
) -> str:
    """List bill payments made by check.

    Args:
        end_user_id: End-user to act on. Uses the default end-user if omitted.
        payee_id: Filter by payee (vendor) ID.
        account_id: Filter by paying bank account ID.
        ref_number: Filter by reference number.
        start_date: Earliest transaction date (YYYY-MM-DD).
        end_date: Latest transaction date (YYYY-MM-DD).
        limit: Page size (1-100, default 50).
        cursor: Cursor from a previous page's next_cursor.
    """
    return await _run(
        handlers.list_bill_payments,
        payment_type=PaymentType.CHECK.value,
        end_user_id=end_user_id,
        payee_id=payee_id,
        account_id=account_id,
        ref_number=ref_number,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        cursor=cursor,
    )


async def list_bill_credit_card_payments(
    end_user_id: str | None = None,
    payee_id: str | None = None,
    account_id: str | None = None,
    ref_number: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    limit: int = 50,
    cursor: str | None = None,
) -> str:
    """List bill payments made by credit card. Filters match list_bill_check_payments."""
    return await _run(
        handlers.list_bill_payments,
        payment_type=PaymentType.CREDIT_CARD.value,
        end_user_id=end_user_id,
        payee_id=payee_id,
        account_id=account_id,
        ref_number=ref_number,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        cursor=cursor,
    )


async def get_payment(
    payment_id: str,
    payment_type: str,
    end_user_id: str | None = None,
) -> str:
    """Get one bill payment.

    Args:
        payment_id: Payment ID.
        payment_type: 'check' or 'credit_card'.
        end_user_id: End-user to act on. Uses the default end-user if omitted.
    """
    return await _run(
        handlers.get_payment,
        payment_id=payment_id,
        payment_type=payment_type,
        end_user_id=end_user_id,
    )


async def create_bill_check_payment(
    payee_id: str,
    account_id: str,
    transaction_date: str,
    applied_to_bills: list[dict[str, Any]],
    end_user_id: str | None = None,
    ref_number: str | None = None,
    memo: str | None = None,
) -> str:
    """Pay one or more bills by check.

    Args:
        payee_id: Vendor being paid.
        account_id: Bank account the check is drawn on.
        transaction_date: Payment date (YYYY-MM-DD).
        applied_to_bills: Bills paid, e.g. [{"billId": "...", "appliedAmount": "100.00"}].
        end_user_id: End-user to act on. Uses the default end-user if omitted.
        ref_number: Check number or reference.
        memo: Memo.
    """
    return await _run(
        handlers.create_bill_payment,
        payment_type=PaymentType.CHECK.value,
        payee_id=payee_id,
        account_id=account_id,
        transaction_date=transaction_date,
        applied_to_bills=applied_to_bills,
        end_user_id=end_user_id,
        ref_number=ref_number,
        memo=memo,
    )


async def create_bill_credit_card_payment(
    payee_id: str,
    account_id: str,
    transaction_date: str,
    applied_to_bills: list[dict[str, Any]],
    end_user_id: str | None = None,
    ref_number: str | None = None,
    memo: str | None = None,
) -> str:
    """Pay one or more bills by credit card.

    Arguments match create_bill_check_payment; account_id names the credit
    card account charged.
    """
    return await _run(
        handlers.create_bill_payment,
        payment_type=PaymentType.CREDIT_CARD.value,
        payee_id=payee_id,
        account_id=account_id,
        transaction_date=transaction_date,
        applied_to_bills=applied_to_bills,
        end_user_id=end_user_id,
        ref_number=ref_number,
        memo=memo,
    )


async def update_payment(
    payment_id: str,
    payment_type: str,
    revision_number: str,
    end_user_id: str | None = None,
    ref_number: str | None = None,
    memo: str | None = None,
    applied_to_bills: list[dict[str, Any]] | None = None,
) -> str:
    """Update a check or credit card bill payment.

    Args:
        payment_id: Payment to update.
        payment_type: 'check' or 'credit_card'.
        revision_number: Current revision number of the payment.
        end_user_id: End-user to act on. Uses the default end-user if omitted.
        ref_number: New reference number.
        memo: New memo.
        applied_to_bills: Replacement bill applications.
    """
    return await _run(
        handlers.update_payment,
        payment_id=payment_id,
        payment_type=payment_type,
        revision_number=revision_number,
        end_user_id=end_user_id,
        ref_number=ref_number,
        memo=memo,
        applied_to_bills=applied_to_bills,
    )


async def delete_payment(
    payment_id: str,
    payment_type: str,
    end_user_id: str | None = None,
) -> str:
    """Delete a check or credit card bill payment."""
    return await _run(
        handlers.delete_payment,
        payment_id=payment_id,
        payment_type=payment_type,
        end_user_id=end_user_id,
    )


# =============================================================================
# Reporting
# =============================================================================


async def get_account_tax_lines(
    end_user_id: str | None = None,
    account_id: str | None = None,
) -> str:
    """List tax line mappings for accounts, optionally for one account."""
    return await _run(
        handlers.get_account_tax_lines,
        end_user_id=end_user_id,
        account_id=account_id,
    )


async def generate_financial_summary(
    end_user_id: str | None = None,
    account_types: list[str] | None = None,
    include_inactive: bool = False,
    start_date: str | None = None,
    end_date: str | None = None,
) -> str:
    """Summarize all accounts: counts and balances per account type.

    Fetches every page of accounts, so this can take a while on large files.

    Args:
        end_user_id: End-user to act on. Uses the default end-user if omitted.
        account_types: Only include these account types.
        include_inactive: Include inactive accounts.
        start_date: Start of the reporting period (YYYY-MM-DD), echoed in the result.
        end_date: End of the reporting period (YYYY-MM-DD), echoed in the result.
    """
    return await _run(
        handlers.generate_financial_summary,
        end_user_id=end_user_id,
        account_types=account_types,
        include_inactive=include_inactive,
        start_date=start_date,
        end_date=end_date,
    )


async def get_vendor_spending_analysis(
    end_user_id: str | None = None,
    vendor_id: str | None = None,
    include_payments: bool = True,
    start_date: str | None = None,
    end_date: str | None = None,
) -> str:
    """Analyze spending per vendor: total billed, paid, and outstanding.

    Args:
        end_user_id: End-user to act on. Uses the default end-user if omitted.
        vendor_id: Restrict the analysis to one vendor.
        include_payments: Also fetch check and credit card payments.
        start_date: Earliest transaction date (YYYY-MM-DD).
        end_date: Latest transaction date (YYYY-MM-DD).

    Returns:
        JSON envelope with vendors sorted by total billed, highest first.
    """
    return await _run(
        handlers.get_vendor_spending_analysis,
        end_user_id=end_user_id,
        vendor_id=vendor_id,
        include_payments=include_payments,
        start_date=start_date,
        end_date=end_date,
    )


# =============================================================================
# Advanced
# =============================================================================


async def passthrough_request(
    end_user_id: str,
    method: str,
    endpoint: str,
    data: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
) -> str:
    """Send a raw request to any Conductor API endpoint.

    Args:
        end_user_id: End-user to act on.
        method: GET, POST, PUT or DELETE. PUT is sent as POST.
        endpoint: Path relative to the API base (e.g., '/quickbooks-desktop/vendors').
        data: JSON body for POST/PUT.
        params: Query parameters for GET.
    """
    return await _run(
        handlers.passthrough_request,
        end_user_id=end_user_id,
        method=method,
        endpoint=endpoint,
        data=data,
        params=params,
    )


async def bulk_operations(
    operations: list[dict[str, Any]],
    end_user_id: str | None = None,
    continue_on_error: bool = False,
) -> str:
    """Run up to 10 bill and payment mutations in order.

    Args:
        operations: Items of {"type": ..., "data": {...}} where type is one of
            create_bill, update_bill (data.billId), create_payment
            (data.paymentType), update_payment (data.paymentId, data.paymentType).
        end_user_id: End-user to act on. Uses the default end-user if omitted.
        continue_on_error: Keep going after a failed operation.
    """
    return await _run(
        handlers.bulk_operations,
        operations=operations,
        end_user_id=end_user_id,
        continue_on_error=continue_on_error,
    )


TOOLS: list[Callable[..., Awaitable[str]]] = [
    create_end_user,
    list_end_users,
    get_end_user,
    delete_end_user,
    create_auth_session,
    check_connection_status,
    list_accounts,
    get_account,
    create_account,
    update_account,
    list_bills,
    get_bill,
    create_bill,
    update_bill,
    list_bill_check_payments,
    list_bill_credit_card_payments,
    get_payment,
    create_bill_check_payment,
    create_bill_credit_card_payment,
    update_payment,
    delete_payment,
    get_account_tax_lines,
    generate_financial_summary,
    get_vendor_spending_analysis,
    passthrough_request,
    bulk_operations,
]


def build_server(disabled_tools: Iterable[str] = ()) -> FastMCP:
    """Create the FastMCP server with every tool not listed as disabled."""
    disabled = set(disabled_tools)
    unknown = disabled - {tool.__name__ for tool in TOOLS}
    if unknown:
        logger.warning(f"DISABLED_TOOLS names unknown tools: {', '.join(sorted(unknown))}")

    server = FastMCP(
        name="qbconductor-mcp",
        instructions=(
            "QuickBooks Desktop accounting through the Conductor API: end-users, "
            "accounts, bills, bill payments and spending reports"
        ),
    )
    for tool in TOOLS:
        if tool.__name__ in disabled:
            logger.info(f"Tool disabled by configuration: {tool.__name__}")
            continue
        server.add_tool(tool)
    return server


# Initialize FastMCP server
mcp = build_server(disabled_tools_from_env())
