"""Tests for the bulk operation runner."""

import json

from qbconductor_mcp import endpoints
from qbconductor_mcp.batch import run_batch
from qbconductor_mcp.models import BatchOperation, BatchOperationType


def op(type_: str, **data) -> BatchOperation:
    return BatchOperation.from_dict({"type": type_, "data": data})


def body(request) -> dict:
    return json.loads(request.content)


class TestRunBatch:
    """Test cases for run_batch ordering and continuation."""

    async def test_all_succeed_in_order(self, client, router):
        router.json("POST", endpoints.BILLS, {"id": "B1"})
        router.json("POST", endpoints.BILL_CHECK_PAYMENTS, {"id": "P1"})

        report = await run_batch(client, [
            op("create_bill", vendorId="V1"),
            op("create_payment", payeeId="V1", paymentType="check"),
        ])

        assert report.summary() == {"total": 2, "successful": 2, "failed": 0}
        assert [r.result["id"] for r in report.results] == ["B1", "P1"]
        assert [r.url.path for r in router.requests] == [
            f"/v1{endpoints.BILLS}",
            f"/v1{endpoints.BILL_CHECK_PAYMENTS}",
        ]

    async def test_stops_at_first_failure(self, client, router):
        """Without continue_on_error nothing after the failure is attempted."""
        router.json("POST", endpoints.BILLS, {"id": "B1"})
        router.json("POST", f"{endpoints.BILLS}/B404", {"error": {"message": "Missing"}}, 404)

        report = await run_batch(client, [
            op("create_bill", vendorId="V1"),
            op("update_bill", billId="B404", revisionNumber="1"),
            op("create_bill", vendorId="V2"),
        ])

        assert len(report.results) == 2
        assert report.results[0].success
        assert not report.results[1].success
        assert report.results[1].error == "Missing"
        assert len(router.requests) == 2

    async def test_continue_on_error(self, client, router):
        """With continue_on_error every operation gets a result, in order."""
        router.json("POST", endpoints.BILLS, {"id": "B1"})
        router.json("POST", f"{endpoints.BILLS}/B404", {"error": {"message": "Missing"}}, 404)

        report = await run_batch(
            client,
            [
                op("create_bill", vendorId="V1"),
                op("update_bill", billId="B404", revisionNumber="1"),
                op("create_bill", vendorId="V2"),
            ],
            continue_on_error=True,
        )

        assert [r.success for r in report.results] == [True, False, True]
        assert report.summary() == {"total": 3, "successful": 2, "failed": 1}
        assert len(router.requests) == 3

    async def test_empty_batch(self, client, router):
        report = await run_batch(client, [])
        assert report.summary() == {"total": 0, "successful": 0, "failed": 0}
        assert router.requests == []


class TestOperationDispatch:
    """Test cases for routing each operation type."""

    async def test_update_bill_strips_bill_id(self, client, router):
        router.json("POST", f"{endpoints.BILLS}/B1", {"id": "B1"})
        original = op("update_bill", billId="B1", revisionNumber="3", memo="new")

        await run_batch(client, [original])

        assert body(router.requests[0]) == {"revisionNumber": "3", "memo": "new"}
        assert original.data["billId"] == "B1"

    async def test_credit_card_payment_endpoint(self, client, router):
        router.json("POST", endpoints.BILL_CREDIT_CARD_PAYMENTS, {"id": "P1"})
        report = await run_batch(client, [op("create_payment", paymentType="credit_card")])

        assert report.results[0].success
        assert router.requests[0].url.path == f"/v1{endpoints.BILL_CREDIT_CARD_PAYMENTS}"

    async def test_payment_defaults_to_check(self, client, router):
        router.json("POST", endpoints.BILL_CHECK_PAYMENTS, {"id": "P1"})
        await run_batch(client, [op("create_payment", payeeId="V1")])
        assert router.requests[0].url.path == f"/v1{endpoints.BILL_CHECK_PAYMENTS}"

    async def test_update_payment_routes_by_type(self, client, router):
        router.json("POST", f"{endpoints.BILL_CREDIT_CARD_PAYMENTS}/P7", {"id": "P7"})
        await run_batch(client, [
            op("update_payment", paymentId="P7", paymentType="credit_card", revisionNumber="2"),
        ])

        assert router.requests[0].url.path == f"/v1{endpoints.BILL_CREDIT_CARD_PAYMENTS}/P7"
        assert body(router.requests[0]) == {"revisionNumber": "2"}

    async def test_missing_id_fails_without_request(self, client, router):
        report = await run_batch(client, [op("update_bill", revisionNumber="1")])

        assert not report.results[0].success
        assert report.results[0].error == "update_bill requires 'billId' in data"
        assert router.requests == []

    async def test_unknown_payment_type_fails(self, client, router):
        report = await run_batch(client, [op("create_payment", paymentType="cash")])
        assert report.results[0].error == "Unsupported paymentType: cash"
        assert router.requests == []

    def test_result_to_dict(self):
        operation = BatchOperation(BatchOperationType.CREATE_BILL, {"vendorId": "V1"})
        assert operation.to_dict() == {"type": "create_bill", "data": {"vendorId": "V1"}}
