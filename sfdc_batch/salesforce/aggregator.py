# sfdc_batch/salesforce/aggregator.py
"""
Merging of per-record and per-batch failures.

Salesforce reports partial failure inside 200 responses: each result entry
carries its own success flag and error list. These helpers turn those
entries into RecordError values and fold any number of errors into a single
AggregateError that keeps every message, in the order observed.
"""
import json
from typing import Any, List, Optional, Sequence

import httpx

from sfdc_batch.core.errors import AggregateError, APIError, RecordError
from sfdc_batch.core.schemas import SalesforceErrorMessage, SalesforceResult


def collect_record_errors(results: Sequence[SalesforceResult]) -> List[RecordError]:
    errors: List[RecordError] = []
    for result in results:
        if result.success:
            continue
        if not result.errors:
            errors.append(RecordError("UNKNOWN_ERROR", "record failed without an error message", result.id))
            continue
        for error in result.errors:
            errors.append(RecordError(error.code, error.message, result.id, error.fields))
    return errors


def merge_errors(errors: Sequence[Exception], results: Optional[List[Any]] = None) -> Optional[AggregateError]:
    """Returns None when there is nothing to report."""
    if not errors:
        return None
    return AggregateError(errors, results)


def parse_error_body(body: Any) -> List[SalesforceErrorMessage]:
    """Best-effort decoding of Salesforce's error list (or single error object)."""
    if isinstance(body, dict):
        body = [body]
    if not isinstance(body, list):
        return []
    messages = []
    for entry in body:
        if isinstance(entry, dict):
            messages.append(SalesforceErrorMessage.model_validate(entry))
    return messages


def api_error_from_body(status_code: int, body: Any, fallback: str = "") -> APIError:
    messages = parse_error_body(body)
    if messages:
        text = "; ".join(f"{m.code}: {m.message}" for m in messages)
        return APIError(status_code, text, [m.model_dump(exclude_none=True) for m in messages])
    if fallback:
        return APIError(status_code, fallback)
    return APIError(status_code, f"Salesforce returned unexpected status {status_code}")


def api_error_from_response(response: httpx.Response) -> APIError:
    """Builds an APIError from a response, using its structured body when there is one."""
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        body = None
    return api_error_from_body(response.status_code, body, fallback=response.text.strip())
