# sfdc_batch/salesforce/operations.py
"""Dispatch of record and bulk operations by name, used by the HTTP surface."""
import logging
from typing import Any, Dict, List, Optional

from sfdc_batch.core.config import settings
from sfdc_batch.core.errors import SalesforceValidationError
from sfdc_batch.core.schemas import (
    BulkJobResults,
    BulkOperation,
    ExecutionMode,
    SalesforceResult,
    SalesforceResults,
)
from sfdc_batch.salesforce import composite, dml
from sfdc_batch.salesforce.bulk import BulkJobController
from sfdc_batch.salesforce.client import SalesforceApiClient

logger = logging.getLogger(settings.APP_NAME)

VALID_OPERATIONS = sorted(op.value for op in BulkOperation)

_BATCH_FUNCTIONS = {
    (ExecutionMode.COLLECTION, BulkOperation.INSERT): dml.insert_collection,
    (ExecutionMode.COLLECTION, BulkOperation.UPDATE): dml.update_collection,
    (ExecutionMode.COLLECTION, BulkOperation.DELETE): dml.delete_collection,
    (ExecutionMode.COMPOSITE, BulkOperation.INSERT): composite.insert_composite,
    (ExecutionMode.COMPOSITE, BulkOperation.UPDATE): composite.update_composite,
    (ExecutionMode.COMPOSITE, BulkOperation.DELETE): composite.delete_composite,
}

_UPSERT_FUNCTIONS = {
    ExecutionMode.COLLECTION: dml.upsert_collection,
    ExecutionMode.COMPOSITE: composite.upsert_composite,
}


def parse_operation(operation: str) -> BulkOperation:
    try:
        return BulkOperation(operation.lower())
    except ValueError:
        raise SalesforceValidationError(
            f"Invalid operation_type. Must be one of {VALID_OPERATIONS}"
        ) from None


async def _perform_single(client: SalesforceApiClient, operation: BulkOperation, object_name: str,
                          records: List[Dict[str, Any]], external_id_field: Optional[str]) -> SalesforceResults:
    """Runs one call per record, in order, stopping at the first failure."""
    # Check every identifier before the first call so nothing is half done
    if operation in (BulkOperation.UPDATE, BulkOperation.DELETE):
        dml.prepare_records(object_name, records, required_field=dml.ID_FIELD)
    elif operation is BulkOperation.UPSERT:
        dml.prepare_records(object_name, records, required_field=external_id_field)

    results: List[SalesforceResult] = []
    for record in records:
        if operation is BulkOperation.INSERT:
            results.append(await dml.insert_one(client, object_name, record))
        elif operation is BulkOperation.UPSERT:
            results.append(await dml.upsert_one(client, object_name, external_id_field, record))
        elif operation is BulkOperation.UPDATE:
            await dml.update_one(client, object_name, record)
            results.append(SalesforceResult(id=str(record[dml.ID_FIELD]), success=True))
        elif operation is BulkOperation.DELETE:
            await dml.delete_one(client, object_name, record)
            results.append(SalesforceResult(id=str(record[dml.ID_FIELD]), success=True))
    return SalesforceResults(results=results)


async def perform_record_operation(
    client: SalesforceApiClient,
    operation: str,
    object_name: str,
    records: List[Dict[str, Any]],
    mode: ExecutionMode = ExecutionMode.COLLECTION,
    external_id_field: Optional[str] = None,
    batch_size: int = 200,
    all_or_none: bool = False,
) -> SalesforceResults:
    op = parse_operation(operation)
    if op is BulkOperation.UPSERT and not external_id_field:
        raise SalesforceValidationError("external_id_field is required for upsert operation")

    logger.info(f"Performing {mode.value} {op.value} of {len(records)} {object_name} record(s)")
    if mode is ExecutionMode.SINGLE:
        return await _perform_single(client, op, object_name, records, external_id_field)

    if op is BulkOperation.UPSERT:
        return await _UPSERT_FUNCTIONS[mode](
            client, object_name, external_id_field, records, batch_size=batch_size, all_or_none=all_or_none
        )
    return await _BATCH_FUNCTIONS[(mode, op)](
        client, object_name, records, batch_size=batch_size, all_or_none=all_or_none
    )


async def perform_bulk_operation(
    client: SalesforceApiClient,
    operation: str,
    object_name: str,
    records: List[Dict[str, Any]],
    external_id_field: Optional[str] = None,
    batch_size: int = 10000,
    wait_for_results: bool = False,
) -> List[str]:
    """Submits Bulk API 2.0 ingest job(s); returns their ids."""
    op = parse_operation(operation)
    controller = BulkJobController(client)
    return await controller.run_bulk(
        object_name, op, records, external_id_field=external_id_field,
        batch_size=batch_size, wait_for_results=wait_for_results,
    )


async def get_bulk_job_status_and_results(client: SalesforceApiClient, job_id: str) -> BulkJobResults:
    logger.info(f"Getting status for bulk job ID: {job_id}")
    return await BulkJobController(client).get_job_results(job_id)
