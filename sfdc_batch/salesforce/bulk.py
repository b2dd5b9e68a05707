# sfdc_batch/salesforce/bulk.py
"""
Bulk API 2.0 ingest jobs.

A job is created Open, receives one CSV upload, is closed with UploadComplete
and is then processed by Salesforce on its own schedule. When the caller asks
to wait, the job is polled until it reaches JobComplete, Failed or Aborted, or
the poll timeout runs out.
"""
import asyncio
import json
import logging
from typing import Any, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from sfdc_batch.core.config import settings
from sfdc_batch.core.errors import (
    JobError,
    JobTimeoutError,
    SalesforceError,
    SalesforceValidationError,
)
from sfdc_batch.core.schemas import BulkJobInfo, BulkJobResults, BulkOperation, JobState
from sfdc_batch.salesforce.aggregator import api_error_from_response, merge_errors
from sfdc_batch.salesforce.batching import Record, RecordAdapter, adapt_records, batch_records, validate_batch_size
from sfdc_batch.salesforce.client import CSV_TYPE, SalesforceApiClient
from sfdc_batch.salesforce.dml import ID_FIELD, require_identifier
from sfdc_batch.utils.data_handler import (
    convert_records_to_csv_string,
    parse_csv_string_to_records,
    read_records_from_csv_file,
)

logger = logging.getLogger(settings.APP_NAME)

INGEST_ENDPOINT = "/jobs/ingest"


def _attach_job_id(error: SalesforceError, job_id: str) -> None:
    if job_id not in error.job_ids:
        error.job_ids.append(job_id)


class BulkJobController:
    def __init__(
        self,
        client: SalesforceApiClient,
        poll_interval: Optional[float] = None,
        poll_timeout: Optional[float] = None,
    ):
        self.client = client
        self.poll_interval = settings.BULK_POLL_INTERVAL if poll_interval is None else poll_interval
        self.poll_timeout = settings.BULK_POLL_TIMEOUT if poll_timeout is None else poll_timeout

    # --- Job resource calls ---

    def _parse_job(self, response) -> BulkJobInfo:
        try:
            return BulkJobInfo.model_validate(response.json())
        except (PydanticValidationError, json.JSONDecodeError, ValueError) as e:
            raise JobError(f"Unrecognised bulk job response: {e}") from e

    async def create_job(self, object_name: str, operation: BulkOperation,
                         external_id_field: Optional[str] = None) -> BulkJobInfo:
        job_config = {
            "object": object_name,
            "operation": operation.value,
            "contentType": "CSV",
            "lineEnding": "LF",
        }
        if operation is BulkOperation.UPSERT:
            job_config["externalIdFieldName"] = external_id_field

        response = await self.client.request("POST", INGEST_ENDPOINT, json_data=job_config)
        if response.status_code != 200:
            raise api_error_from_response(response)

        try:
            body = response.json()
        except ValueError:
            body = {}
        job_id = body.get("id") if isinstance(body, dict) else None
        state = body.get("state") if isinstance(body, dict) else None
        if not job_id or state != JobState.OPEN.value:
            raise JobError("error creating bulk data job: id does not exist or job closed prematurely", job_id or None)

        job = self._parse_job(response)
        logger.info(f"Bulk job created. ID: {job.id}, Operation: {operation.value}, Object: {object_name}")
        return job

    async def update_job_state(self, job_id: str, state: JobState) -> None:
        if state not in (JobState.UPLOAD_COMPLETE, JobState.ABORTED):
            raise SalesforceValidationError(f"a client can only move a job to UploadComplete or Aborted, not {state.value}")
        response = await self.client.request("PATCH", f"{INGEST_ENDPOINT}/{job_id}", json_data={"state": state.value})
        if response.status_code != 200:
            raise api_error_from_response(response)
        logger.info(f"Bulk job {job_id} moved to {state.value}")

    async def abort_job(self, job_id: str) -> None:
        await self.update_job_state(job_id, JobState.ABORTED)

    async def _abort_quietly(self, job_id: str) -> None:
        try:
            await self.abort_job(job_id)
        except SalesforceError as abort_exc:
            logger.error(f"Failed to abort job {job_id} after error: {abort_exc}")

    async def upload_job_data(self, job_id: str, csv_data: str) -> None:
        logger.info(f"Uploading {len(csv_data)} bytes of CSV to bulk job {job_id}")
        response = await self.client.request(
            "PUT", f"{INGEST_ENDPOINT}/{job_id}/batches", content=csv_data, content_type=CSV_TYPE,
            accept="application/json",
        )
        if response.status_code != 201:
            raise api_error_from_response(response)

    async def get_job_info(self, job_id: str) -> BulkJobInfo:
        response = await self.client.request("GET", f"{INGEST_ENDPOINT}/{job_id}")
        if response.status_code != 200:
            raise api_error_from_response(response)
        return self._parse_job(response)

    async def _get_results_csv(self, job_id: str, kind: str) -> str:
        response = await self.client.request("GET", f"{INGEST_ENDPOINT}/{job_id}/{kind}", accept=CSV_TYPE)
        if response.status_code != 200:
            raise api_error_from_response(response)
        return response.text

    async def get_failed_records(self, job_id: str) -> str:
        return await self._get_results_csv(job_id, "failedResults")

    async def get_successful_records(self, job_id: str) -> str:
        return await self._get_results_csv(job_id, "successfulResults")

    async def get_job_results(self, job_id: str) -> BulkJobResults:
        """
        Job info plus, once the job is JobComplete, its parsed result rows.
        """
        job = await self.get_job_info(job_id)
        results = BulkJobResults(job=job)
        if job.state is JobState.JOB_COMPLETE:
            logger.info(f"Bulk job {job_id} is complete. Fetching results...")
            results.successful_records = parse_csv_string_to_records(await self.get_successful_records(job_id))
            results.failed_records = parse_csv_string_to_records(await self.get_failed_records(job_id))
        return results

    # --- Polling ---

    async def _is_finished(self, job: BulkJobInfo) -> bool:
        """
        True for a cleanly finished job, False while Salesforce is still working.
        Raises JobError for any terminal outcome that is not a clean success.
        """
        state = job.state
        if state in (JobState.JOB_COMPLETE, JobState.FAILED):
            if job.errorMessage:
                raise JobError(job.errorMessage, job.id)
            if job.numberRecordsFailed > 0:
                try:
                    failed_records = await self.get_failed_records(job.id)
                except SalesforceError as e:
                    logger.error(f"Could not fetch failed records of bulk job {job.id}: {e}")
                    raise JobError(
                        f"unable to retrieve details about {job.numberRecordsFailed} failed records from bulk operation",
                        job.id,
                    ) from e
                raise JobError(failed_records, job.id)
            if state is JobState.FAILED:
                raise JobError("bulk job failed", job.id)
            return True
        elif state is JobState.ABORTED:
            raise JobError("bulk job aborted", job.id)
        elif state in (JobState.OPEN, JobState.UPLOAD_COMPLETE, JobState.IN_PROGRESS):
            return False
        raise JobError(f"unhandled bulk job state: {state}", job.id)

    async def wait_for_job(self, job_id: str, poll_interval: Optional[float] = None,
                           poll_timeout: Optional[float] = None) -> BulkJobInfo:
        """
        Polls the job every poll_interval seconds until it is terminal.

        Raises JobTimeoutError once poll_timeout seconds have passed without a
        terminal state.
        """
        interval = self.poll_interval if poll_interval is None else poll_interval
        timeout = self.poll_timeout if poll_timeout is None else poll_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise JobTimeoutError(f"timed out after {timeout}s waiting for bulk job {job_id}", job_id)
            await asyncio.sleep(min(interval, remaining))
            job = await self.get_job_info(job_id)
            logger.debug(f"Bulk job {job_id} state: {job.state.value}")
            if await self._is_finished(job):
                logger.info(f"Bulk job {job_id} completed. Records processed: {job.numberRecordsProcessed}")
                return job

    # --- End to end ---

    def prepare_records(self, object_name: str, operation: BulkOperation, records: Iterable[Any],
                        external_id_field: Optional[str] = None,
                        adapter: Optional[RecordAdapter] = None) -> List[Record]:
        if operation is BulkOperation.UPSERT and not external_id_field:
            raise SalesforceValidationError("external id field name is required for upsert")
        adapted = adapt_records(records, adapter)
        if operation in (BulkOperation.UPDATE, BulkOperation.DELETE):
            for record in adapted:
                require_identifier(record, ID_FIELD, object_name)
        elif operation is BulkOperation.UPSERT:
            for record in adapted:
                require_identifier(record, external_id_field, object_name)
        if operation is BulkOperation.DELETE:
            # Delete jobs take an Id column and nothing else
            adapted = [{ID_FIELD: record[ID_FIELD]} for record in adapted]
        return adapted

    async def _submit_job(self, object_name: str, operation: BulkOperation, records: List[Record],
                          external_id_field: Optional[str]) -> str:
        job = await self.create_job(object_name, operation, external_id_field)
        job_id = job.id
        try:
            csv_data = convert_records_to_csv_string(records)
            await self.upload_job_data(job_id, csv_data)
        except SalesforceError as e:
            logger.warning(f"Error during upload for bulk job {job_id}. Attempting to abort job.")
            await self._abort_quietly(job_id)
            _attach_job_id(e, job_id)
            raise

        try:
            await self.update_job_state(job_id, JobState.UPLOAD_COMPLETE)
        except SalesforceError as e:
            _attach_job_id(e, job_id)
            raise
        return job_id

    async def run_job(self, object_name: str, operation: BulkOperation, records: Iterable[Any],
                      external_id_field: Optional[str] = None, wait_for_results: bool = False,
                      adapter: Optional[RecordAdapter] = None) -> str:
        """
        Creates one ingest job for all records, uploads them and closes the job.

        Returns the job id. Errors raised after the job exists carry it in `job_ids`.
        """
        prepared = self.prepare_records(object_name, operation, records, external_id_field, adapter)
        if not prepared:
            raise SalesforceValidationError("No records provided for bulk DML operation.")

        logger.info(f"Starting Bulk API 2.0 {operation.value} of {len(prepared)} {object_name} records")
        job_id = await self._submit_job(object_name, operation, prepared, external_id_field)
        if wait_for_results:
            try:
                await self.wait_for_job(job_id)
            except SalesforceError as e:
                _attach_job_id(e, job_id)
                raise
        return job_id

    async def run_bulk(self, object_name: str, operation: BulkOperation, records: Iterable[Any],
                       external_id_field: Optional[str] = None, batch_size: int = 10000,
                       wait_for_results: bool = False, adapter: Optional[RecordAdapter] = None) -> List[str]:
        """
        One ingest job per batch of batch_size records.

        Job creation stops at the first create or upload failure. When waiting,
        every submitted job is polled and all failures are raised together as an
        AggregateError whose job_ids lists every job that was created.
        """
        validate_batch_size(batch_size, settings.BULK_BATCH_SIZE_MAX)
        prepared = self.prepare_records(object_name, operation, records, external_id_field, adapter)

        job_ids: List[str] = []
        submitted: List[str] = []
        errors: List[Exception] = []
        for batch in batch_records(prepared, batch_size):
            try:
                job_id = await self._submit_job(object_name, operation, batch, external_id_field)
            except SalesforceError as e:
                logger.error(f"Bulk {operation.value} of {object_name} stopped: {e}")
                job_ids.extend(i for i in e.job_ids if i not in job_ids)
                errors.append(e)
                break
            job_ids.append(job_id)
            submitted.append(job_id)

        if wait_for_results:
            for job_id in submitted:
                try:
                    await self.wait_for_job(job_id)
                except SalesforceError as e:
                    errors.append(e)

        aggregate = merge_errors(errors)
        if aggregate is not None:
            aggregate.job_ids = list(job_ids)
            raise aggregate
        logger.info(f"Bulk {operation.value} of {object_name} submitted as {len(job_ids)} job(s): {job_ids}")
        return job_ids

    async def run_bulk_file(self, object_name: str, operation: BulkOperation, file_path: str,
                            external_id_field: Optional[str] = None, batch_size: int = 10000,
                            wait_for_results: bool = False) -> List[str]:
        validate_batch_size(batch_size, settings.BULK_BATCH_SIZE_MAX)
        records = read_records_from_csv_file(file_path)
        return await self.run_bulk(object_name, operation, records, external_id_field, batch_size, wait_for_results)
