# sfdc_batch/app/routers/records.py
import logging

from fastapi import APIRouter, Body, Depends, Path

from sfdc_batch.core.config import settings
from sfdc_batch.core.schemas import (
    BulkJobStatusResponse,
    BulkJobSubmitPayload,
    BulkOperationResponse,
    JobState,
    OperationResponse,
    RecordOperationPayload,
)
from sfdc_batch.salesforce.client import SalesforceApiClient, get_salesforce_api_client
from sfdc_batch.salesforce.operations import (
    get_bulk_job_status_and_results,
    perform_bulk_operation,
    perform_record_operation,
)

logger = logging.getLogger(settings.APP_NAME)
router = APIRouter()

# Library errors (SalesforceError) propagate to the handler in app.main


@router.post(
    "/records/{operation}",
    response_model=OperationResponse,
    summary="Insert, update, upsert or delete records",
    description="Runs the operation one record at a time, as sObject Collection batches, or as one composite request."
)
async def handle_record_operation(
    operation: str = Path(..., description="insert, update, upsert or delete"),
    payload: RecordOperationPayload = Body(...),
    client: SalesforceApiClient = Depends(get_salesforce_api_client),
):
    results = await perform_record_operation(
        client,
        operation,
        payload.object_name,
        payload.records,
        mode=payload.mode,
        external_id_field=payload.external_id_field,
        batch_size=payload.batch_size,
        all_or_none=payload.all_or_none,
    )
    return OperationResponse(
        success=True,
        message=f"Processed {len(payload.records)} {payload.object_name} records ({payload.mode.value} {operation.lower()}).",
        results=results.results,
    )


@router.post(
    "/bulk/{operation}",
    response_model=BulkOperationResponse,
    summary="Submit Bulk API 2.0 ingest job(s)",
)
async def handle_bulk_operation(
    operation: str = Path(..., description="insert, update, upsert or delete"),
    payload: BulkJobSubmitPayload = Body(...),
    client: SalesforceApiClient = Depends(get_salesforce_api_client),
):
    job_ids = await perform_bulk_operation(
        client,
        operation,
        payload.object_name,
        payload.records,
        external_id_field=payload.external_id_field,
        batch_size=payload.batch_size,
        wait_for_results=payload.wait_for_results,
    )
    verb = "completed" if payload.wait_for_results else "submitted"
    return BulkOperationResponse(
        success=True,
        message=f"Bulk {operation.lower()} job(s) {verb} for {payload.object_name}.",
        job_ids=job_ids,
    )


@router.get(
    "/bulk/jobs/{job_id}",
    response_model=BulkJobStatusResponse,
    summary="Get Bulk Job Status and Results",
)
async def handle_get_bulk_job_status(
    job_id: str,
    client: SalesforceApiClient = Depends(get_salesforce_api_client),
):
    job_results = await get_bulk_job_status_and_results(client, job_id)
    job = job_results.job
    complete = job.state is JobState.JOB_COMPLETE
    return BulkJobStatusResponse(
        job_id=job.id or job_id,
        state=job.state,
        operation=job.operation,
        object_name=job.object,
        error_message=job.errorMessage,
        records_processed=job.numberRecordsProcessed,
        records_failed=job.numberRecordsFailed,
        successful_records=job_results.successful_records if complete else None,
        failed_records=job_results.failed_records if complete else None,
    )
