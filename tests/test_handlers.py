"""Tests for the tool handlers against a stub Conductor API."""

import json

import httpx
import pytest

from qbconductor_mcp import endpoints, handlers
from qbconductor_mcp.exceptions import ConductorError, ErrorKind


def body(request) -> dict:
    return json.loads(request.content)


class TestEndUsers:
    """Test cases for end-user and auth session handlers."""

    async def test_create_end_user(self, context, router):
        router.json("POST", endpoints.END_USERS, {"id": "end_usr_new"})
        envelope = await handlers.create_end_user(
            context, company_name="Acme", source_id="acme-1", email="ops@acme.test"
        )
        assert envelope["data"] == {"id": "end_usr_new"}
        assert body(router.requests[0]) == {
            "companyName": "Acme",
            "sourceId": "acme-1",
            "email": "ops@acme.test",
        }

    async def test_create_end_user_rejects_bad_email(self, context, router):
        with pytest.raises(ConductorError) as info:
            await handlers.create_end_user(context, email="not-an-email")
        assert info.value.kind is ErrorKind.VALIDATION
        assert router.requests == []

    async def test_delete_end_user(self, context, router):
        router.add("DELETE", f"{endpoints.END_USERS}/end_usr_9", httpx.Response(204))
        envelope = await handlers.delete_end_user(context, end_user_id="end_usr_9")
        assert envelope["success"] is True
        assert envelope["data"] is None

    async def test_auth_session_uses_publishable_key(self, context, router):
        router.json("POST", endpoints.AUTH_SESSIONS, {"authFlowUrl": "https://connect.test/x"})
        envelope = await handlers.create_auth_session(
            context, end_user_id="end_usr_1", redirect_url="https://app.test/done"
        )
        assert envelope["data"]["authFlowUrl"] == "https://connect.test/x"
        assert body(router.requests[0]) == {
            "publishableKey": "pk_test_123",
            "endUserId": "end_usr_1",
            "redirectUrl": "https://app.test/done",
        }

    async def test_auth_session_requires_publishable_key(self, context, router):
        context.settings.publishable_key = ""
        with pytest.raises(ConductorError) as info:
            await handlers.create_auth_session(context, end_user_id="end_usr_1")
        assert info.value.kind is ErrorKind.AUTHENTICATION
        assert router.requests == []


class TestConnectionStatus:
    """Test cases for check_connection_status."""

    async def test_connected(self, context, router):
        router.json("GET", endpoints.HEALTH_CHECK, {"status": "ok"})
        envelope = await handlers.check_connection_status(context)
        assert envelope["data"]["connected"] is True
        assert envelope["data"]["end_user_id"] == "end_usr_default"

    async def test_disconnected_is_reported_as_data(self, context, router):
        router.add("GET", endpoints.HEALTH_CHECK, httpx.Response(503))
        envelope = await handlers.check_connection_status(context, end_user_id="end_usr_2")

        assert envelope["success"] is True
        assert envelope["data"]["connected"] is False
        assert envelope["data"]["status"] == "disconnected"
        assert envelope["data"]["end_user_id"] == "end_usr_2"

    async def test_other_errors_propagate(self, context, router):
        router.json("GET", endpoints.HEALTH_CHECK, {"error": {"message": "bad key"}}, 401)
        with pytest.raises(ConductorError) as info:
            await handlers.check_connection_status(context)
        assert info.value.kind is ErrorKind.AUTHENTICATION

    async def test_never_cached(self, context, router):
        router.json("GET", endpoints.HEALTH_CHECK, {"status": "ok"})
        await handlers.check_connection_status(context)
        await handlers.check_connection_status(context)
        assert len(router.requests) == 2


class TestAccounts:
    """Test cases for account handlers."""

    async def test_list_accounts_maps_filters(self, context, router):
        router.json("GET", endpoints.ACCOUNTS, {
            "data": [{"id": "A1"}],
            "hasMore": True,
            "nextCursor": "c2",
        })
        envelope = await handlers.list_accounts(
            context, account_type="bank", name_contains="Check", limit=10
        )

        params = router.requests[0].url.params
        assert params["accountType"] == "bank"
        assert params["name"] == "Check"
        assert params["limit"] == "10"
        assert "includeInactive" not in params
        assert envelope["metadata"]["has_more"] is True
        assert envelope["metadata"]["next_cursor"] == "c2"
        assert envelope["metadata"]["end_user_id"] == "end_usr_default"

    async def test_list_accounts_rejects_bad_limit(self, context, router):
        with pytest.raises(ConductorError) as info:
            await handlers.list_accounts(context, limit=500)
        assert info.value.kind is ErrorKind.VALIDATION
        assert router.requests == []

    async def test_list_accounts_rejects_unknown_type(self, context, router):
        with pytest.raises(ConductorError):
            await handlers.list_accounts(context, account_type="savings")

    async def test_get_account_summary(self, context, router):
        router.json("GET", f"{endpoints.ACCOUNTS}/A1", {
            "id": "A1",
            "name": "Checking",
            "accountType": "bank",
            "balance": "10.00",
            "isActive": True,
        })
        envelope = await handlers.get_account(context, account_id="A1")
        assert envelope["metadata"]["summary"].startswith("Checking (bank)")

    async def test_update_account_body(self, context, router):
        router.json("POST", f"{endpoints.ACCOUNTS}/A1", {"id": "A1", "revisionNumber": "5"})
        await handlers.update_account(
            context, account_id="A1", revision_number="4", name="", is_active=False
        )
        assert body(router.requests[0]) == {"revisionNumber": "4", "isActive": False}

    async def test_stale_revision_is_conflict(self, context, router):
        router.json(
            "POST",
            f"{endpoints.ACCOUNTS}/A1",
            {"error": {"message": "Revision number mismatch"}},
            409,
        )
        with pytest.raises(ConductorError) as info:
            await handlers.update_account(context, account_id="A1", revision_number="1")
        assert info.value.kind is ErrorKind.CONFLICT


class TestBillsAndPayments:
    """Test cases for bill and payment handlers."""

    async def test_create_bill(self, context, router):
        router.json("POST", endpoints.BILLS, {"id": "B1"})
        lines = [{"accountId": "A1", "amount": "125.00"}]
        envelope = await handlers.create_bill(
            context, vendor_id="V1", transaction_date="2024-05-01", lines=lines
        )
        assert envelope["metadata"]["message"] == "Bill created successfully for vendor V1"
        assert body(router.requests[0]) == {
            "vendorId": "V1",
            "transactionDate": "2024-05-01",
            "lines": lines,
        }

    async def test_create_bill_validates_lines(self, context, router):
        with pytest.raises(ConductorError):
            await handlers.create_bill(
                context,
                vendor_id="V1",
                transaction_date="2024-05-01",
                lines=[{"accountId": "A1", "amount": "1.234"}],
            )
        assert router.requests == []

    async def test_list_bills_date_filters(self, context, router):
        router.json("GET", endpoints.BILLS, {"data": [], "hasMore": False})
        await handlers.list_bills(
            context, vendor_name="Acme", is_paid=False,
            start_date="2024-01-01", end_date="2024-03-31",
        )
        params = router.requests[0].url.params
        assert params["vendor"] == "Acme"
        assert params["isPaid"] == "false"
        assert params["transactionDateFrom"] == "2024-01-01"
        assert params["transactionDateTo"] == "2024-03-31"

    async def test_list_credit_card_payments(self, context, router):
        router.json("GET", endpoints.BILL_CREDIT_CARD_PAYMENTS, {"data": [], "hasMore": False})
        await handlers.list_bill_payments(context, payment_type="credit_card", payee_id="V1")
        assert router.requests[0].url.params["payeeId"] == "V1"

    async def test_invalid_payment_type(self, context, router):
        with pytest.raises(ConductorError) as info:
            await handlers.get_payment(context, payment_id="P1", payment_type="cash")
        assert info.value.kind is ErrorKind.VALIDATION

    async def test_create_check_payment(self, context, router):
        router.json("POST", endpoints.BILL_CHECK_PAYMENTS, {"id": "P1"})
        envelope = await handlers.create_bill_payment(
            context,
            payment_type="check",
            payee_id="V1",
            account_id="A1",
            transaction_date="2024-05-02",
            applied_to_bills=[{"billId": "B1", "appliedAmount": "60.00"}],
            ref_number="1001",
        )
        assert envelope["metadata"]["message"] == (
            "Check payment created successfully for payee V1"
        )
        assert body(router.requests[0])["refNumber"] == "1001"

    async def test_delete_credit_card_payment(self, context, router):
        path = f"{endpoints.BILL_CREDIT_CARD_PAYMENTS}/P2"
        router.add("DELETE", path, httpx.Response(200, json={"deleted": True}))
        envelope = await handlers.delete_payment(
            context, payment_id="P2", payment_type="credit_card"
        )
        assert envelope["metadata"]["message"] == "Credit card payment P2 deleted successfully"
        assert router.requests[0].method == "DELETE"


class TestReports:
    """Test cases for reporting handlers."""

    async def test_vendor_spending(self, context, router):
        router.json("GET", endpoints.BILLS, {"data": [{
            "vendor": {"id": "V1", "fullName": "Acme"},
            "totalAmount": "100.00",
            "isPaid": False,
            "openBalance": "40.00",
        }], "hasMore": False})
        router.json("GET", endpoints.BILL_CHECK_PAYMENTS, {
            "data": [{"payee": {"id": "V1"}, "totalAmount": "60.00"}],
            "hasMore": False,
        })
        router.json("GET", endpoints.BILL_CREDIT_CARD_PAYMENTS, {"data": [], "hasMore": False})

        envelope = await handlers.get_vendor_spending_analysis(context)

        assert envelope["data"] == [{
            "vendor_id": "V1",
            "vendor_name": "Acme",
            "total_billed": 100.0,
            "total_paid": 60.0,
            "bill_count": 1,
            "payment_count": 1,
            "outstanding_balance": 40.0,
            "total_billed_formatted": "$100.00",
            "total_paid_formatted": "$60.00",
            "outstanding_balance_formatted": "$40.00",
        }]
        assert envelope["metadata"]["total_vendors"] == 1
        assert envelope["metadata"]["total_bills"] == 1
        assert envelope["metadata"]["total_payments"] == 1
        assert "Acme: $100.00 total" in envelope["metadata"]["summary"]

    async def test_financial_summary(self, context, router):
        router.json("GET", endpoints.ACCOUNTS, {"data": [
            {"accountType": "bank", "balance": "10.00", "isActive": True},
        ], "hasMore": False})
        envelope = await handlers.generate_financial_summary(context, include_inactive=True)

        assert envelope["data"]["total_balance"] == 10.0
        assert router.requests[0].url.params["includeInactive"] == "true"

    async def test_financial_summary_rejects_bad_range(self, context, router):
        with pytest.raises(ConductorError):
            await handlers.generate_financial_summary(
                context, start_date="2024-12-31", end_date="2024-01-01"
            )

    async def test_tax_lines(self, context, router):
        router.json("GET", endpoints.ACCOUNT_TAX_LINES, {"data": [{"taxLineId": 1}]})
        envelope = await handlers.get_account_tax_lines(context, account_id="A1")
        assert envelope["metadata"]["total_count"] == 1
        assert router.requests[0].url.params["accountId"] == "A1"


class TestPassthrough:
    """Test cases for passthrough_request method dispatch."""

    async def test_get_bypasses_cache(self, context, router):
        router.json("GET", "/quickbooks-desktop/vendors", {"data": []})
        for _ in range(2):
            await handlers.passthrough_request(
                context, end_user_id="end_usr_1", method="get",
                endpoint="/quickbooks-desktop/vendors", params={"limit": 5},
            )
        assert len(router.requests) == 2
        assert router.requests[0].url.params["limit"] == "5"
        assert len(context.cache) == 0

    async def test_put_is_sent_as_post(self, context, router):
        router.json("POST", "/quickbooks-desktop/vendors/V1", {"id": "V1"})
        envelope = await handlers.passthrough_request(
            context, end_user_id="end_usr_1", method="PUT",
            endpoint="quickbooks-desktop/vendors/V1", data={"revisionNumber": "2"},
        )
        assert router.requests[0].method == "POST"
        assert envelope["metadata"]["endpoint"] == "/quickbooks-desktop/vendors/V1"
        assert envelope["metadata"]["method"] == "PUT"

    async def test_delete(self, context, router):
        router.add("DELETE", "/quickbooks-desktop/vendors/V1", httpx.Response(204))
        envelope = await handlers.passthrough_request(
            context, end_user_id="end_usr_1", method="DELETE",
            endpoint="/quickbooks-desktop/vendors/V1",
        )
        assert envelope["data"] == {"success": True, "message": "Resource deleted successfully"}

    @pytest.mark.parametrize("method", ["PATCH", "HEAD", ""])
    async def test_unsupported_method(self, context, router, method):
        with pytest.raises(ConductorError) as info:
            await handlers.passthrough_request(
                context, end_user_id="end_usr_1", method=method, endpoint="/end-users"
            )
        assert info.value.kind is ErrorKind.VALIDATION

    async def test_rejects_absolute_url(self, context, router):
        with pytest.raises(ConductorError):
            await handlers.passthrough_request(
                context, end_user_id="end_usr_1", method="GET",
                endpoint="https://elsewhere.test/steal",
            )
        assert router.requests == []


class TestBulkOperations:
    """Test cases for the bulk_operations handler."""

    async def test_summary_metadata(self, context, router):
        router.json("POST", endpoints.BILLS, {"id": "B1"})
        envelope = await handlers.bulk_operations(
            context,
            operations=[
                {"type": "create_bill", "data": {"vendorId": "V1"}},
                {"type": "update_bill", "data": {"revisionNumber": "1"}},
                {"type": "create_bill", "data": {"vendorId": "V2"}},
            ],
            continue_on_error=True,
        )

        assert envelope["success"] is True
        assert envelope["metadata"]["summary"] == {"total": 3, "successful": 2, "failed": 1}
        assert [r["success"] for r in envelope["data"]] == [True, False, True]
        assert envelope["data"][1]["error"] == "update_bill requires 'billId' in data"

    async def test_too_many_operations(self, context, router):
        operations = [{"type": "create_bill", "data": {}}] * 11
        with pytest.raises(ConductorError, match="At most 10"):
            await handlers.bulk_operations(context, operations=operations)
        assert router.requests == []

    async def test_empty_operations(self, context):
        with pytest.raises(ConductorError, match="operations: Required"):
            await handlers.bulk_operations(context, operations=[])

    async def test_unknown_operation_type(self, context, router):
        with pytest.raises(ConductorError, match="Unsupported 'delete_bill'"):
            await handlers.bulk_operations(
                context, operations=[{"type": "delete_bill", "data": {}}]
            )
        assert router.requests == []
