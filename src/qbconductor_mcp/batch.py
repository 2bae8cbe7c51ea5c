"""Bulk runner for bill and payment mutations.

Operations run strictly in order, one at a time. A failure is recorded for
that operation; the run then stops unless ``continue_on_error`` is set.
Nothing is retried and earlier mutations are not rolled back.
"""

import logging
from collections.abc import Iterable
from typing import Any

from qbconductor_mcp import endpoints
from qbconductor_mcp.client import ConductorClient
from qbconductor_mcp.exceptions import ValidationError, to_domain_error
from qbconductor_mcp.models import (
    BatchOperation,
    BatchOperationType,
    BatchReport,
    BatchResult,
)

logger = logging.getLogger(__name__)


def _require(data: dict[str, Any], field: str, operation: BatchOperationType) -> str:
    value = data.pop(field, None)
    if not value:
        raise ValidationError(f"{operation.value} requires '{field}' in data")
    return str(value)


async def execute_operation(client: ConductorClient, operation: BatchOperation) -> Any:
    """Dispatch one operation to its upstream call.

    The operation's payload is copied; routing fields (``billId``,
    ``paymentId``, ``paymentType``) are stripped from the request body.
    """
    data = dict(operation.data)
    op_type = operation.type

    if op_type is BatchOperationType.CREATE_BILL:
        return await client.post(endpoints.BILLS, data)

    if op_type is BatchOperationType.UPDATE_BILL:
        bill_id = _require(data, "billId", op_type)
        return await client.post(endpoints.item_endpoint(endpoints.BILLS, bill_id), data)

    if op_type is BatchOperationType.CREATE_PAYMENT:
        payment_type = data.get("paymentType") or endpoints.PaymentType.CHECK
        try:
            collection = endpoints.payment_endpoint(payment_type)
        except ValueError as e:
            raise ValidationError(f"Unsupported paymentType: {payment_type}") from e
        return await client.post(collection, data)

    if op_type is BatchOperationType.UPDATE_PAYMENT:
        payment_type = data.pop("paymentType", None) or endpoints.PaymentType.CHECK
        payment_id = _require(data, "paymentId", op_type)
        try:
            collection = endpoints.payment_endpoint(payment_type)
        except ValueError as e:
            raise ValidationError(f"Unsupported paymentType: {payment_type}") from e
        return await client.post(endpoints.item_endpoint(collection, payment_id), data)

    raise ValidationError(f"Unsupported operation type: {op_type}")


async def run_batch(
    client: ConductorClient,
    operations: Iterable[BatchOperation],
    continue_on_error: bool = False,
) -> BatchReport:
    """Execute operations sequentially and collect a result for each.

    Args:
        client: Client bound to the end-user the batch acts on.
        operations: Operations in execution order.
        continue_on_error: Keep going after a failed operation.

    Returns:
        BatchReport with one result per attempted operation, in input order.
    """
    operations = list(operations)
    report = BatchReport()
    end_user_id = client.get_end_user_id()

    logger.info(
        f"Starting bulk operations: {len(operations)} operations "
        f"(continue_on_error={continue_on_error}, end_user_id={end_user_id})"
    )

    for index, operation in enumerate(operations, start=1):
        logger.debug(f"Executing bulk operation {index}/{len(operations)}: {operation.type.value}")
        try:
            result = await execute_operation(client, operation)
        except Exception as e:
            error = to_domain_error(e)
            logger.error(f"Bulk operation {index} ({operation.type.value}) failed: {error.message}")
            report.results.append(BatchResult(operation, success=False, error=error.message))
            if not continue_on_error:
                logger.warning("Stopping bulk operations due to error and continue_on_error=False")
                break
            continue

        report.results.append(BatchResult(operation, success=True, result=result))
        logger.debug(f"Bulk operation {index} completed successfully")

    logger.info(
        f"Bulk operations completed: {report.successful} successful, "
        f"{report.failed} failed (end_user_id={end_user_id})"
    )
    return report
