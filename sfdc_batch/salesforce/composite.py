# sfdc_batch/salesforce/composite.py
"""
Composite API: several sObject Collection calls executed server-side in one round trip.

Each batch of records becomes one subrequest. The platform caps a composite
request at 25 subrequests, so the builder refuses anything larger before any
body is assembled or anything is sent.
"""
import logging
from typing import Any, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from sfdc_batch.core.config import settings
from sfdc_batch.core.errors import APIError, SalesforceValidationError, SubrequestLimitError
from sfdc_batch.core.schemas import (
    CompositeRequest,
    CompositeResponse,
    CompositeSubRequest,
    SalesforceResult,
    SalesforceResults,
)
from sfdc_batch.salesforce.aggregator import api_error_from_body, api_error_from_response, collect_record_errors, merge_errors
from sfdc_batch.salesforce.batching import Record, RecordAdapter, batch_records, count_batches, validate_batch_size
from sfdc_batch.salesforce.client import SalesforceApiClient
from sfdc_batch.salesforce.dml import ID_FIELD, prepare_records

logger = logging.getLogger(settings.APP_NAME)

REFERENCE_PREFIX = "refObj"


class CompositeRequestBuilder:
    def __init__(self, max_subrequests: Optional[int] = None):
        self.max_subrequests = max_subrequests or settings.COMPOSITE_SUBREQUEST_MAX

    def validate_subrequest_count(self, number_of_records: int, batch_size: int) -> int:
        number_of_batches = count_batches(number_of_records, batch_size)
        if number_of_batches > self.max_subrequests:
            raise SubrequestLimitError(number_of_batches, self.max_subrequests)
        return number_of_batches

    def build(self, method: str, url: str, all_or_none: bool, batch_size: int,
              records: List[Record]) -> CompositeRequest:
        """One subrequest per batch, each carrying a {allOrNone, records} collection body."""
        self.validate_subrequest_count(len(records), batch_size)
        subrequests = [
            CompositeSubRequest(
                method=method,
                url=url,
                referenceId=f"{REFERENCE_PREFIX}{index}",
                body={"allOrNone": all_or_none, "records": batch},
            )
            for index, batch in enumerate(batch_records(records, batch_size))
        ]
        return CompositeRequest(allOrNone=all_or_none, compositeRequest=subrequests)

    def build_delete(self, url: str, all_or_none: bool, batch_size: int, ids: List[str]) -> CompositeRequest:
        """Body-less DELETE subrequests; the ids go in each subrequest's query string."""
        self.validate_subrequest_count(len(ids), batch_size)
        all_or_none_param = str(all_or_none).lower()
        subrequests = [
            CompositeSubRequest(
                method="DELETE",
                url=f"{url}?ids={','.join(batch)}&allOrNone={all_or_none_param}",
                referenceId=f"{REFERENCE_PREFIX}{index}",
            )
            for index, batch in enumerate(batch_records(ids, batch_size))
        ]
        return CompositeRequest(allOrNone=all_or_none, compositeRequest=subrequests)


async def execute_composite(client: SalesforceApiClient, object_name: str,
                            composite_request: CompositeRequest) -> SalesforceResults:
    """
    Sends the composite request and checks every sub-response in order.

    The first sub-response that failed, at HTTP level or for any of its
    records, is raised and the remaining ones are not inspected.
    """
    count = len(composite_request.compositeRequest)
    if count == 0:
        return SalesforceResults()

    logger.info(f"Sending composite request with {count} subrequest(s) for {object_name} (allOrNone={composite_request.allOrNone})")
    response = await client.request("POST", "/composite", json_data=composite_request.to_payload())
    if response.status_code != 200:
        raise api_error_from_response(response)

    try:
        composite_response = CompositeResponse.model_validate(response.json())
    except (PydanticValidationError, ValueError) as e:
        raise APIError(response.status_code, f"Unexpected composite response body: {e}") from e

    results: List[SalesforceResult] = []
    for sub in composite_response.compositeResponse:
        if not 200 <= sub.httpStatusCode < 300:
            error = api_error_from_body(sub.httpStatusCode, sub.body, fallback=f"subrequest {sub.referenceId} failed")
            logger.error(f"Composite subrequest {sub.referenceId} for {object_name} failed: {error}")
            raise error

        body = sub.body if isinstance(sub.body, list) else []
        try:
            sub_results = [SalesforceResult.model_validate(entry) for entry in body]
        except PydanticValidationError as e:
            raise APIError(sub.httpStatusCode, f"Unexpected result entry in subrequest {sub.referenceId}: {e}") from e
        results.extend(sub_results)
        record_errors = collect_record_errors(sub_results)
        if record_errors:
            logger.error(f"Composite subrequest {sub.referenceId} for {object_name}: {len(record_errors)} record error(s)")
            if composite_request.allOrNone:
                logger.warning("Records rolled back because not all records were valid and the request was using allOrNone")
            raise merge_errors(record_errors, results)

    logger.info(f"Composite request for {object_name} succeeded: {len(results)} record result(s)")
    return SalesforceResults(results=results)


def _check_composite_batch_size(batch_size: int) -> None:
    validate_batch_size(batch_size, settings.COLLECTION_BATCH_SIZE_MAX)


async def insert_composite(client: SalesforceApiClient, object_name: str, records: Iterable[Any],
                           batch_size: int = 200, all_or_none: bool = False,
                           adapter: Optional[RecordAdapter] = None,
                           builder: Optional[CompositeRequestBuilder] = None) -> SalesforceResults:
    _check_composite_batch_size(batch_size)
    prepared = prepare_records(object_name, records, adapter, strip_fields=(ID_FIELD,))
    builder = builder or CompositeRequestBuilder()
    request = builder.build("POST", client.data_path("/composite/sobjects"), all_or_none, batch_size, prepared)
    return await execute_composite(client, object_name, request)


async def update_composite(client: SalesforceApiClient, object_name: str, records: Iterable[Any],
                           batch_size: int = 200, all_or_none: bool = False,
                           adapter: Optional[RecordAdapter] = None,
                           builder: Optional[CompositeRequestBuilder] = None) -> SalesforceResults:
    _check_composite_batch_size(batch_size)
    prepared = prepare_records(object_name, records, adapter, required_field=ID_FIELD)
    builder = builder or CompositeRequestBuilder()
    request = builder.build("PATCH", client.data_path("/composite/sobjects"), all_or_none, batch_size, prepared)
    return await execute_composite(client, object_name, request)


async def upsert_composite(client: SalesforceApiClient, object_name: str, external_id_field: str,
                           records: Iterable[Any], batch_size: int = 200, all_or_none: bool = False,
                           adapter: Optional[RecordAdapter] = None,
                           builder: Optional[CompositeRequestBuilder] = None) -> SalesforceResults:
    if not external_id_field:
        raise SalesforceValidationError("external id field name is required for upsert")
    _check_composite_batch_size(batch_size)
    prepared = prepare_records(object_name, records, adapter, required_field=external_id_field,
                               strip_fields=(ID_FIELD,))
    builder = builder or CompositeRequestBuilder()
    url = client.data_path(f"/composite/sobjects/{object_name}/{external_id_field}")
    request = builder.build("PATCH", url, all_or_none, batch_size, prepared)
    return await execute_composite(client, object_name, request)


async def delete_composite(client: SalesforceApiClient, object_name: str, records: Iterable[Any],
                           batch_size: int = 200, all_or_none: bool = False,
                           adapter: Optional[RecordAdapter] = None,
                           builder: Optional[CompositeRequestBuilder] = None) -> SalesforceResults:
    _check_composite_batch_size(batch_size)
    prepared = prepare_records(object_name, records, adapter, required_field=ID_FIELD)
    ids = [str(record[ID_FIELD]) for record in prepared]
    builder = builder or CompositeRequestBuilder()
    request = builder.build_delete(client.data_path("/composite/sobjects/"), all_or_none, batch_size, ids)
    return await execute_composite(client, object_name, request)
