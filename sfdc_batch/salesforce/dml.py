# sfdc_batch/salesforce/dml.py
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx
from pydantic import ValidationError as PydanticValidationError

from sfdc_batch.core.config import settings
from sfdc_batch.core.errors import APIError, SalesforceError, SalesforceValidationError
from sfdc_batch.core.schemas import SalesforceResult, SalesforceResults
from sfdc_batch.salesforce.aggregator import api_error_from_response, collect_record_errors, merge_errors
from sfdc_batch.salesforce.batching import Record, RecordAdapter, adapt_records, batch_records, validate_batch_size
from sfdc_batch.salesforce.client import SalesforceApiClient

logger = logging.getLogger(settings.APP_NAME)

ID_FIELD = "Id"

# Expected success status per single-record operation. Upsert answers 201 when
# the external id matched nothing and a record was created.
INSERT_OK = {201}
UPDATE_OK = {204}
UPSERT_OK = {200, 201}
DELETE_OK = {204}
COLLECTION_OK = {200}


# --- Record preparation ---

def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def require_identifier(record: Record, field_name: str, object_name: str) -> str:
    value = record.get(field_name)
    if not _has_value(value):
        if field_name == ID_FIELD:
            raise SalesforceValidationError(f"salesforce Id not found in {object_name} data")
        raise SalesforceValidationError(
            f"salesforce externalId: {field_name} not found in {object_name} data. "
            f"make sure to append custom fields with '__c'"
        )
    return str(value)


def prepare_records(
    object_name: str,
    records: Iterable[Any],
    adapter: Optional[RecordAdapter] = None,
    required_field: Optional[str] = None,
    strip_fields: Sequence[str] = (),
) -> List[Record]:
    """
    Adapts every record, checks the identifying field and builds the payload copies.

    All records are validated before any is returned, so a bad record fails the
    whole call before anything is sent.
    """
    if not object_name:
        raise SalesforceValidationError("object name is required")

    adapted = adapt_records(records, adapter)
    if required_field:
        for record in adapted:
            require_identifier(record, required_field, object_name)

    prepared = []
    for record in adapted:
        payload = {k: v for k, v in record.items() if k not in strip_fields}
        payload["attributes"] = {"type": object_name}
        prepared.append(payload)
    return prepared


def parse_results(response: httpx.Response) -> List[SalesforceResult]:
    """Decodes a per-record result list from a collection response."""
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        raise APIError(response.status_code, f"Salesforce returned a non-JSON result body: {response.text[:200]}")
    if not isinstance(body, list):
        raise APIError(response.status_code, "Salesforce returned an unexpected result body (expected a list of results)")
    try:
        return [SalesforceResult.model_validate(entry) for entry in body]
    except PydanticValidationError as e:
        raise APIError(response.status_code, f"Unexpected result entry in Salesforce response: {e}") from e


def _single_result(response: httpx.Response) -> SalesforceResult:
    try:
        return SalesforceResult.model_validate(response.json())
    except (json.JSONDecodeError, ValueError):
        # Some upserts answer with an empty body
        return SalesforceResult(success=True)


def _check_status(response: httpx.Response, expected: set) -> None:
    if response.status_code not in expected:
        raise api_error_from_response(response)


# --- Single record operations ---

async def insert_one(client: SalesforceApiClient, object_name: str, record: Any,
                     adapter: Optional[RecordAdapter] = None) -> SalesforceResult:
    """
    Creates one record. Returns the result holding the new record id.
    """
    payload = prepare_records(object_name, [record], adapter, strip_fields=(ID_FIELD,))[0]
    logger.info(f"Creating record in {object_name}")
    response = await client.request("POST", f"/sobjects/{object_name}", json_data=payload)
    _check_status(response, INSERT_OK)
    result = _single_result(response)
    logger.info(f"Successfully created record in {object_name}. Record ID: {result.id}")
    return result


async def update_one(client: SalesforceApiClient, object_name: str, record: Any,
                     adapter: Optional[RecordAdapter] = None) -> None:
    adapted = adapt_records([record], adapter)[0]
    record_id = require_identifier(adapted, ID_FIELD, object_name)
    payload = prepare_records(object_name, [adapted], strip_fields=(ID_FIELD,))[0]

    logger.info(f"Updating record {record_id} in {object_name}")
    response = await client.request("PATCH", f"/sobjects/{object_name}/{record_id}", json_data=payload)
    _check_status(response, UPDATE_OK)
    logger.info(f"Successfully updated record {record_id} in {object_name}")


async def upsert_one(client: SalesforceApiClient, object_name: str, external_id_field: str, record: Any,
                     adapter: Optional[RecordAdapter] = None) -> SalesforceResult:
    """
    Upserts one record matched on external_id_field.

    The external id travels in the URL, so it is removed from the body together with Id.
    """
    if not external_id_field:
        raise SalesforceValidationError("external id field name is required for upsert")
    adapted = adapt_records([record], adapter)[0]
    external_id = require_identifier(adapted, external_id_field, object_name)
    payload = prepare_records(object_name, [adapted], strip_fields=(ID_FIELD, external_id_field))[0]

    logger.info(f"Upserting record in {object_name} via {external_id_field}={external_id}")
    response = await client.request(
        "PATCH", f"/sobjects/{object_name}/{external_id_field}/{external_id}", json_data=payload
    )
    _check_status(response, UPSERT_OK)
    result = _single_result(response)
    if result.created is None:
        result.created = response.status_code == 201
    status_str = "created" if result.created else "updated"
    logger.info(f"Successfully {status_str} record in {object_name} via {external_id_field}={external_id}")
    return result


async def delete_one(client: SalesforceApiClient, object_name: str, record: Any,
                     adapter: Optional[RecordAdapter] = None) -> None:
    adapted = adapt_records([record], adapter)[0]
    record_id = require_identifier(adapted, ID_FIELD, object_name)

    logger.info(f"Deleting record {record_id} from {object_name}")
    response = await client.request("DELETE", f"/sobjects/{object_name}/{record_id}")
    _check_status(response, DELETE_OK)
    logger.info(f"Successfully deleted record {record_id} from {object_name}")


# --- sObject Collection operations ---

async def _send_batches(
    client: SalesforceApiClient,
    object_name: str,
    requests: List[Dict[str, Any]],
    continue_on_error: bool,
) -> SalesforceResults:
    """
    Sends prepared batch requests one after another, in order.

    With continue_on_error every batch is attempted and all failures are raised
    together at the end; otherwise the first failing batch stops the run.
    """
    results: List[SalesforceResult] = []
    errors: List[Exception] = []
    total = len(requests)

    for number, req in enumerate(requests, 1):
        logger.info(f"Sending {object_name} batch {number}/{total}: {req['method']} {req['endpoint']}")
        try:
            response = await client.request(req["method"], req["endpoint"], json_data=req.get("body"))
            _check_status(response, COLLECTION_OK)
            batch_results = parse_results(response)
        except SalesforceError as e:
            logger.error(f"{object_name} batch {number}/{total} failed: {e}")
            if not continue_on_error:
                raise
            errors.append(e)
            continue

        results.extend(batch_results)
        batch_errors = collect_record_errors(batch_results)
        if batch_errors:
            logger.warning(f"{object_name} batch {number}/{total}: {len(batch_errors)} record error(s)")
            if not continue_on_error:
                raise merge_errors(batch_errors, results)
            errors.extend(batch_errors)

    aggregate = merge_errors(errors, results)
    if aggregate is not None:
        raise aggregate
    return SalesforceResults(results=results)


def _collection_requests(method: str, endpoint: str, records: List[Record], batch_size: int,
                         all_or_none: bool) -> List[Dict[str, Any]]:
    return [
        {"method": method, "endpoint": endpoint, "body": {"allOrNone": all_or_none, "records": batch}}
        for batch in batch_records(records, batch_size)
    ]


async def insert_collection(client: SalesforceApiClient, object_name: str, records: Iterable[Any],
                            batch_size: int = 200, all_or_none: bool = False,
                            adapter: Optional[RecordAdapter] = None) -> SalesforceResults:
    validate_batch_size(batch_size, settings.COLLECTION_BATCH_SIZE_MAX)
    prepared = prepare_records(object_name, records, adapter, strip_fields=(ID_FIELD,))
    logger.info(f"Inserting {len(prepared)} {object_name} records in batches of {batch_size}")
    requests = _collection_requests("POST", "/composite/sobjects/", prepared, batch_size, all_or_none)
    return await _send_batches(client, object_name, requests, continue_on_error=True)


async def update_collection(client: SalesforceApiClient, object_name: str, records: Iterable[Any],
                            batch_size: int = 200, all_or_none: bool = False,
                            adapter: Optional[RecordAdapter] = None) -> SalesforceResults:
    validate_batch_size(batch_size, settings.COLLECTION_BATCH_SIZE_MAX)
    # The collection endpoint finds each record by the Id in its body, so it stays
    prepared = prepare_records(object_name, records, adapter, required_field=ID_FIELD)
    logger.info(f"Updating {len(prepared)} {object_name} records in batches of {batch_size}")
    requests = _collection_requests("PATCH", "/composite/sobjects/", prepared, batch_size, all_or_none)
    return await _send_batches(client, object_name, requests, continue_on_error=True)


async def upsert_collection(client: SalesforceApiClient, object_name: str, external_id_field: str,
                            records: Iterable[Any], batch_size: int = 200, all_or_none: bool = False,
                            adapter: Optional[RecordAdapter] = None) -> SalesforceResults:
    if not external_id_field:
        raise SalesforceValidationError("external id field name is required for upsert")
    validate_batch_size(batch_size, settings.COLLECTION_BATCH_SIZE_MAX)
    prepared = prepare_records(object_name, records, adapter, required_field=external_id_field,
                               strip_fields=(ID_FIELD,))
    logger.info(f"Upserting {len(prepared)} {object_name} records on {external_id_field} in batches of {batch_size}")
    endpoint = f"/composite/sobjects/{object_name}/{external_id_field}"
    requests = _collection_requests("PATCH", endpoint, prepared, batch_size, all_or_none)
    return await _send_batches(client, object_name, requests, continue_on_error=True)


async def delete_collection(client: SalesforceApiClient, object_name: str, records: Iterable[Any],
                            batch_size: int = 200, all_or_none: bool = False,
                            adapter: Optional[RecordAdapter] = None) -> SalesforceResults:
    """
    Deletes records by Id, one collection call per batch.

    Unlike the other collection operations, the first failing batch stops the run.
    """
    validate_batch_size(batch_size, settings.COLLECTION_BATCH_SIZE_MAX)
    prepared = prepare_records(object_name, records, adapter, required_field=ID_FIELD)
    ids = [str(record[ID_FIELD]) for record in prepared]
    logger.info(f"Deleting {len(ids)} {object_name} records in batches of {batch_size}")

    requests = [
        {
            "method": "DELETE",
            "endpoint": f"/composite/sobjects/?ids={','.join(batch)}&allOrNone={str(all_or_none).lower()}",
        }
        for batch in batch_records(ids, batch_size)
    ]
    return await _send_batches(client, object_name, requests, continue_on_error=False)
