"""Operation handlers, one per MCP tool.

Each handler validates its arguments, runs its upstream calls through a
ConductorClient bound to the requested end-user, and returns the success
envelope. Failures leave as ConductorError (translated exactly once by
``with_error_handling``); the server turns them into failure envelopes.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from qbconductor_mcp import endpoints, reporting
from qbconductor_mcp.batch import run_batch
from qbconductor_mcp.cache import Cache
from qbconductor_mcp.client import ConductorClient
from qbconductor_mcp.config import Settings
from qbconductor_mcp.exceptions import (
    ConductorError,
    ErrorKind,
    ValidationError,
    with_error_handling,
)
from qbconductor_mcp.formatting import (
    format_account_summary,
    format_bill_summary,
    format_list_response,
    format_paginated_response,
    format_payment_summary,
    format_success_response,
    format_vendor_spending,
)
from qbconductor_mcp.models import BatchOperation
from qbconductor_mcp.validation import (
    MAX_BULK_OPERATIONS,
    require,
    validate_applied_bills,
    validate_bill_lines,
    validate_choice,
    validate_date,
    validate_date_range,
    validate_id,
    validate_limit,
    validate_revision_number,
)

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PASSTHROUGH_METHODS = ("GET", "POST", "PUT", "DELETE")
PAYMENT_TYPES = tuple(p.value for p in endpoints.PaymentType)


@dataclass
class ToolContext:
    """Shared dependencies handed to every handler.

    Args:
        settings: Runtime settings.
        cache: Process-wide response cache.
        transport: Optional httpx transport for every client (tests).
    """

    settings: Settings
    cache: Cache
    transport: httpx.AsyncBaseTransport | None = None

    def client(self, end_user_id: str | None = None) -> ConductorClient:
        """Create a client bound to one end-user (default when None)."""
        return ConductorClient(
            self.settings,
            self.cache,
            end_user_id=end_user_id,
            transport=self.transport,
        )


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None."""
    return {k: v for k, v in data.items() if v is not None}


def _list_params(limit: int, cursor: str | None, **filters: Any) -> dict[str, Any]:
    return _compact({"limit": validate_limit(limit), "cursor": cursor, **filters})


def _payment_type(value: str | None) -> endpoints.PaymentType:
    require(value, "payment_type")
    validate_choice(value, PAYMENT_TYPES, "payment_type")
    return endpoints.PaymentType(value)


# =============================================================================
# End-users and auth sessions
# =============================================================================


@with_error_handling
async def create_end_user(
    ctx: ToolContext,
    company_name: str | None = None,
    source_id: str | None = None,
    email: str | None = None,
) -> dict[str, Any]:
    """Create a Conductor end-user."""
    if email is not None and not EMAIL_PATTERN.match(email):
        raise ValidationError("Validation failed: email: Invalid email")

    async with ctx.client() as client:
        result = await client.post(endpoints.END_USERS, _compact({
            "sourceId": source_id,
            "email": email,
            "companyName": company_name,
        }))

    return format_success_response(result, {"message": "End-user created successfully"})


@with_error_handling
async def list_end_users(
    ctx: ToolContext,
    limit: int = 50,
    cursor: str | None = None,
) -> dict[str, Any]:
    async with ctx.client() as client:
        page = await client.get_page(endpoints.END_USERS, _list_params(limit, cursor))

    return format_paginated_response(page.data, page.has_more, page.next_cursor)


@with_error_handling
async def get_end_user(ctx: ToolContext, end_user_id: str) -> dict[str, Any]:
    validate_id(end_user_id, "end_user_id")
    async with ctx.client() as client:
        result = await client.get(endpoints.item_endpoint(endpoints.END_USERS, end_user_id))
    return format_success_response(result)


@with_error_handling
async def delete_end_user(ctx: ToolContext, end_user_id: str) -> dict[str, Any]:
    validate_id(end_user_id, "end_user_id")
    async with ctx.client() as client:
        await client.delete(endpoints.item_endpoint(endpoints.END_USERS, end_user_id))
    return format_success_response(None, {
        "message": f"End-user {end_user_id} deleted successfully",
    })


@with_error_handling
async def create_auth_session(
    ctx: ToolContext,
    end_user_id: str,
    redirect_url: str | None = None,
) -> dict[str, Any]:
    """Create an auth session the end-user opens to connect QuickBooks Desktop."""
    validate_id(end_user_id, "end_user_id")
    if redirect_url is not None and not redirect_url.startswith(("http://", "https://")):
        raise ValidationError("Validation failed: redirect_url: Invalid url")
    if not ctx.settings.publishable_key:
        raise ConductorError(
            ErrorKind.AUTHENTICATION,
            "Publishable key is not configured",
            action="Set CONDUCTOR_API_KEY to your Conductor publishable key",
        )

    async with ctx.client() as client:
        result = await client.post(endpoints.AUTH_SESSIONS, _compact({
            "publishableKey": ctx.settings.publishable_key,
            "endUserId": end_user_id,
            "redirectUrl": redirect_url,
        }))

    return format_success_response(result, {
        "message": (
            "Authentication session created successfully. Direct the end-user to the "
            "provided URL to connect their QuickBooks Desktop."
        ),
        "instructions": (
            "The end-user should visit the authentication URL while QuickBooks Desktop "
            "is running with their company file open."
        ),
    })


@with_error_handling
async def check_connection_status(
    ctx: ToolContext,
    end_user_id: str | None = None,
) -> dict[str, Any]:
    """Run the upstream health check; a disconnected desktop is a result, not an error."""
    async with ctx.client(end_user_id) as client:
        status = {"end_user_id": client.get_end_user_id()}
        try:
            await client.get(endpoints.HEALTH_CHECK, use_cache=False)
        except ConductorError as e:
            if e.kind is not ErrorKind.UPSTREAM_UNAVAILABLE:
                raise
            logger.warning(f"QuickBooks Desktop not connected for {status['end_user_id']}")
            status.update(
                connected=False,
                status="disconnected",
                error="QuickBooks Desktop is not connected or not responding",
            )
            return format_success_response(status, {
                "message": "QuickBooks Desktop connection is not active",
                "instructions": (
                    "Ensure QuickBooks Desktop is running with a company file open, "
                    "or create a new auth session if needed."
                ),
            })

    status.update(connected=True, status="active")
    return format_success_response(status, {
        "message": "QuickBooks Desktop connection is active and healthy",
    })


# =============================================================================
# Accounts
# =============================================================================


@with_error_handling
async def list_accounts(
    ctx: ToolContext,
    end_user_id: str | None = None,
    account_type: str | None = None,
    is_active: bool | None = None,
    name_contains: str | None = None,
    include_inactive: bool = False,
    limit: int = 50,
    cursor: str | None = None,
) -> dict[str, Any]:
    validate_choice(account_type, endpoints.ACCOUNT_TYPES, "account_type")
    params = _list_params(
        limit,
        cursor,
        accountType=account_type,
        isActive=is_active,
        name=name_contains,
        includeInactive=include_inactive or None,
    )

    async with ctx.client(end_user_id) as client:
        page = await client.get_page(endpoints.ACCOUNTS, params)
        return format_paginated_response(
            page.data, page.has_more, page.next_cursor, client.get_end_user_id()
        )


@with_error_handling
async def get_account(
    ctx: ToolContext,
    account_id: str,
    end_user_id: str | None = None,
) -> dict[str, Any]:
    validate_id(account_id, "account_id")
    async with ctx.client(end_user_id) as client:
        result = await client.get(endpoints.item_endpoint(endpoints.ACCOUNTS, account_id))
        return format_success_response(result, {
            "end_user_id": client.get_end_user_id(),
            "summary": format_account_summary(result),
        })


@with_error_handling
async def create_account(
    ctx: ToolContext,
    name: str,
    account_type: str,
    end_user_id: str | None = None,
    description: str | None = None,
    account_number: str | None = None,
    parent_id: str | None = None,
    is_active: bool = True,
) -> dict[str, Any]:
    require(name, "name")
    require(account_type, "account_type")
    validate_choice(account_type, endpoints.ACCOUNT_TYPES, "account_type")

    async with ctx.client(end_user_id) as client:
        result = await client.post(endpoints.ACCOUNTS, _compact({
            "name": name,
            "accountType": account_type,
            "description": description,
            "accountNumber": account_number,
            "parentId": parent_id,
            "isActive": is_active,
        }))
        return format_success_response(result, {
            "message": f'Account "{name}" created successfully',
            "end_user_id": client.get_end_user_id(),
        })


@with_error_handling
async def update_account(
    ctx: ToolContext,
    account_id: str,
    revision_number: str,
    end_user_id: str | None = None,
    name: str | None = None,
    description: str | None = None,
    account_number: str | None = None,
    is_active: bool | None = None,
) -> dict[str, Any]:
    validate_id(account_id, "account_id")
    validate_revision_number(revision_number)

    async with ctx.client(end_user_id) as client:
        result = await client.post(
            endpoints.item_endpoint(endpoints.ACCOUNTS, account_id),
            _compact({
                "revisionNumber": revision_number,
                "name": name or None,
                "description": description,
                "accountNumber": account_number,
                "isActive": is_active,
            }),
        )
        return format_success_response(result, {
            "message": f"Account {account_id} updated successfully",
            "end_user_id": client.get_end_user_id(),
        })


# =============================================================================
# Bills
# =============================================================================


@with_error_handling
async def list_bills(
    ctx: ToolContext,
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
) -> dict[str, Any]:
    validate_date_range(start_date, end_date)
    params = _list_params(
        limit,
        cursor,
        vendorId=vendor_id,
        vendor=vendor_name,
        isPaid=is_paid,
        refNumber=ref_number,
        memo=memo,
        transactionDateFrom=start_date,
        transactionDateTo=end_date,
    )

    async with ctx.client(end_user_id) as client:
        page = await client.get_page(endpoints.BILLS, params)
        return format_paginated_response(
            page.data, page.has_more, page.next_cursor, client.get_end_user_id()
        )


@with_error_handling
async def get_bill(
    ctx: ToolContext,
    bill_id: str,
    end_user_id: str | None = None,
) -> dict[str, Any]:
    validate_id(bill_id, "bill_id")
    async with ctx.client(end_user_id) as client:
        result = await client.get(endpoints.item_endpoint(endpoints.BILLS, bill_id))
        return format_success_response(result, {
            "end_user_id": client.get_end_user_id(),
            "summary": format_bill_summary(result),
        })


@with_error_handling
async def create_bill(
    ctx: ToolContext,
    vendor_id: str,
    transaction_date: str,
    lines: list[dict[str, Any]],
    end_user_id: str | None = None,
    due_date: str | None = None,
    ref_number: str | None = None,
    memo: str | None = None,
) -> dict[str, Any]:
    validate_id(vendor_id, "vendor_id")
    require(transaction_date, "transaction_date")
    validate_date(transaction_date, "transaction_date")
    validate_date(due_date, "due_date")
    validate_bill_lines(lines)

    async with ctx.client(end_user_id) as client:
        result = await client.post(endpoints.BILLS, _compact({
            "vendorId": vendor_id,
            "transactionDate": transaction_date,
            "dueDate": due_date,
            "refNumber": ref_number,
            "memo": memo,
            "lines": lines,
        }))
        return format_success_response(result, {
            "message": f"Bill created successfully for vendor {vendor_id}",
            "end_user_id": client.get_end_user_id(),
        })


@with_error_handling
async def update_bill(
    ctx: ToolContext,
    bill_id: str,
    revision_number: str,
    end_user_id: str | None = None,
    vendor_id: str | None = None,
    transaction_date: str | None = None,
    due_date: str | None = None,
    ref_number: str | None = None,
    memo: str | None = None,
    lines: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    validate_id(bill_id, "bill_id")
    validate_revision_number(revision_number)
    validate_date(transaction_date, "transaction_date")
    validate_date(due_date, "due_date")
    validate_bill_lines(lines, required=False)

    async with ctx.client(end_user_id) as client:
        result = await client.post(
            endpoints.item_endpoint(endpoints.BILLS, bill_id),
            _compact({
                "revisionNumber": revision_number,
                "vendorId": vendor_id or None,
                "transactionDate": transaction_date,
                "dueDate": due_date,
                "refNumber": ref_number,
                "memo": memo,
                "lines": lines or None,
            }),
        )
        return format_success_response(result, {
            "message": f"Bill {bill_id} updated successfully",
            "end_user_id": client.get_end_user_id(),
        })


# =============================================================================
# Bill payments
# =============================================================================


@with_error_handling
async def list_bill_payments(
    ctx: ToolContext,
    payment_type: str,
    end_user_id: str | None = None,
    payee_id: str | None = None,
    account_id: str | None = None,
    ref_number: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    limit: int = 50,
    cursor: str | None = None,
) -> dict[str, Any]:
    """List check or credit card bill payments."""
    collection = endpoints.payment_endpoint(_payment_type(payment_type))
    validate_date_range(start_date, end_date)
    params = _list_params(
        limit,
        cursor,
        payeeId=payee_id,
        accountId=account_id,
        refNumber=ref_number,
        transactionDateFrom=start_date,
        transactionDateTo=end_date,
    )

    async with ctx.client(end_user_id) as client:
        page = await client.get_page(collection, params)
        return format_paginated_response(
            page.data, page.has_more, page.next_cursor, client.get_end_user_id()
        )


@with_error_handling
async def get_payment(
    ctx: ToolContext,
    payment_id: str,
    payment_type: str,
    end_user_id: str | None = None,
) -> dict[str, Any]:
    collection = endpoints.payment_endpoint(_payment_type(payment_type))
    validate_id(payment_id, "payment_id")

    async with ctx.client(end_user_id) as client:
        result = await client.get(endpoints.item_endpoint(collection, payment_id))
        return format_success_response(result, {
            "end_user_id": client.get_end_user_id(),
            "summary": format_payment_summary(result),
        })


@with_error_handling
async def create_bill_payment(
    ctx: ToolContext,
    payment_type: str,
    payee_id: str,
    account_id: str,
    transaction_date: str,
    applied_to_bills: list[dict[str, Any]],
    end_user_id: str | None = None,
    ref_number: str | None = None,
    memo: str | None = None,
) -> dict[str, Any]:
    """Pay one or more bills by check or credit card."""
    kind = _payment_type(payment_type)
    validate_id(payee_id, "payee_id")
    validate_id(account_id, "account_id")
    require(transaction_date, "transaction_date")
    validate_date(transaction_date, "transaction_date")
    validate_applied_bills(applied_to_bills)

    async with ctx.client(end_user_id) as client:
        result = await client.post(endpoints.payment_endpoint(kind), _compact({
            "payeeId": payee_id,
            "accountId": account_id,
            "transactionDate": transaction_date,
            "refNumber": ref_number,
            "memo": memo,
            "appliedToBills": applied_to_bills,
        }))
        return format_success_response(result, {
            "message": f"{kind.label} payment created successfully for payee {payee_id}",
            "end_user_id": client.get_end_user_id(),
        })


@with_error_handling
async def update_payment(
    ctx: ToolContext,
    payment_id: str,
    payment_type: str,
    revision_number: str,
    end_user_id: str | None = None,
    ref_number: str | None = None,
    memo: str | None = None,
    applied_to_bills: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    kind = _payment_type(payment_type)
    validate_id(payment_id, "payment_id")
    validate_revision_number(revision_number)
    validate_applied_bills(applied_to_bills, required=False)

    async with ctx.client(end_user_id) as client:
        result = await client.post(
            endpoints.item_endpoint(endpoints.payment_endpoint(kind), payment_id),
            _compact({
                "revisionNumber": revision_number,
                "refNumber": ref_number,
                "memo": memo,
                "appliedToBills": applied_to_bills or None,
            }),
        )
        return format_success_response(result, {
            "message": f"{kind.label} payment {payment_id} updated successfully",
            "end_user_id": client.get_end_user_id(),
        })


@with_error_handling
async def delete_payment(
    ctx: ToolContext,
    payment_id: str,
    payment_type: str,
    end_user_id: str | None = None,
) -> dict[str, Any]:
    kind = _payment_type(payment_type)
    validate_id(payment_id, "payment_id")

    async with ctx.client(end_user_id) as client:
        await client.delete(endpoints.item_endpoint(endpoints.payment_endpoint(kind), payment_id))
        return format_success_response(None, {
            "message": f"{kind.label} payment {payment_id} deleted successfully",
            "end_user_id": client.get_end_user_id(),
        })


# =============================================================================
# Reporting
# =============================================================================


@with_error_handling
async def get_account_tax_lines(
    ctx: ToolContext,
    end_user_id: str | None = None,
    account_id: str | None = None,
) -> dict[str, Any]:
    if account_id is not None:
        validate_id(account_id, "account_id")

    async with ctx.client(end_user_id) as client:
        page = await client.get_page(
            endpoints.ACCOUNT_TAX_LINES, _compact({"accountId": account_id})
        )
        return format_success_response(page.data, {
            "total_count": len(page.data),
            "end_user_id": client.get_end_user_id(),
            "message": f"Retrieved {len(page.data)} tax line entries",
        })


@with_error_handling
async def generate_financial_summary(
    ctx: ToolContext,
    end_user_id: str | None = None,
    account_types: list[str] | None = None,
    include_inactive: bool = False,
    start_date: str | None = None,
    end_date: str | None = None,
) -> dict[str, Any]:
    for account_type in account_types or []:
        validate_choice(account_type, endpoints.ACCOUNT_TYPES, "account_types")
    validate_date_range(start_date, end_date)

    async with ctx.client(end_user_id) as client:
        summary = await reporting.generate_financial_summary(
            client,
            account_types=account_types,
            include_inactive=include_inactive,
            start_date=start_date,
            end_date=end_date,
        )
        return format_success_response(summary.to_dict(), {
            "end_user_id": client.get_end_user_id(),
            "message": f"Financial summary generated for {summary.total_accounts} accounts",
        })


@with_error_handling
async def get_vendor_spending_analysis(
    ctx: ToolContext,
    end_user_id: str | None = None,
    vendor_id: str | None = None,
    include_payments: bool = True,
    start_date: str | None = None,
    end_date: str | None = None,
) -> dict[str, Any]:
    if vendor_id is not None:
        validate_id(vendor_id, "vendor_id")
    validate_date_range(start_date, end_date)

    async with ctx.client(end_user_id) as client:
        vendors, counts = await reporting.get_vendor_spending_analysis(
            client,
            vendor_id=vendor_id,
            include_payments=include_payments,
            start_date=start_date,
            end_date=end_date,
        )
        summary = format_list_response(
            vendors,
            lambda v: format_vendor_spending(
                v.vendor_name, v.total_billed, v.bill_count, v.payment_count
            ),
            "Vendor Spending Analysis",
        )
        return format_success_response([v.to_dict() for v in vendors], {
            "end_user_id": client.get_end_user_id(),
            "total_vendors": len(vendors),
            **counts,
            "date_range": {"start_date": start_date, "end_date": end_date},
            "summary": summary,
        })


# =============================================================================
# Advanced
# =============================================================================


@with_error_handling
async def passthrough_request(
    ctx: ToolContext,
    end_user_id: str,
    method: str,
    endpoint: str,
    data: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Forward an arbitrary request to the Conductor API.

    GET bypasses the cache; PUT is sent as POST, which is how Conductor
    applies updates.
    """
    validate_id(end_user_id, "end_user_id")
    method = (method or "").upper()
    validate_choice(method, PASSTHROUGH_METHODS, "method")
    require(endpoint, "endpoint")
    if "://" in endpoint:
        raise ValidationError("Validation failed: endpoint: Use a path without base URL")
    if not endpoint.startswith("/"):
        endpoint = f"/{endpoint}"

    logger.info(f"Executing passthrough request: {method} {endpoint} (end_user_id={end_user_id})")

    async with ctx.client(end_user_id) as client:
        try:
            if method == "GET":
                result = await client.get(endpoint, params or {}, use_cache=False)
            elif method == "DELETE":
                await client.delete(endpoint)
                result = {"success": True, "message": "Resource deleted successfully"}
            else:
                result = await client.post(endpoint, data or {})
        except ConductorError as e:
            logger.error(f"Passthrough request failed: {method} {endpoint}: {e.message}")
            raise

    return format_success_response(result, {
        "method": method,
        "endpoint": endpoint,
        "end_user_id": end_user_id,
        "message": "Passthrough request completed successfully",
    })


@with_error_handling
async def bulk_operations(
    ctx: ToolContext,
    operations: list[dict[str, Any]],
    end_user_id: str | None = None,
    continue_on_error: bool = False,
) -> dict[str, Any]:
    """Run up to ten bill/payment mutations in order."""
    require(operations, "operations")
    if len(operations) > MAX_BULK_OPERATIONS:
        raise ValidationError(
            f"Validation failed: operations: At most {MAX_BULK_OPERATIONS} operations allowed"
        )

    parsed: list[BatchOperation] = []
    for i, raw in enumerate(operations):
        if not isinstance(raw, dict) or not isinstance(raw.get("data"), dict):
            raise ValidationError(f"Validation failed: operations.{i}: Expected {{type, data}}")
        try:
            parsed.append(BatchOperation.from_dict(raw))
        except ValueError as e:
            raise ValidationError(
                f"Validation failed: operations.{i}.type: Unsupported '{raw.get('type')}'"
            ) from e

    async with ctx.client(end_user_id) as client:
        report = await run_batch(client, parsed, continue_on_error=continue_on_error)
        return format_success_response([r.to_dict() for r in report.results], {
            "summary": report.summary(),
            "end_user_id": client.get_end_user_id(),
            "message": (
                f"Bulk operations completed: {report.successful} successful, "
                f"{report.failed} failed"
            ),
        })


