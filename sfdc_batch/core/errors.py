# sfdc_batch/core/errors.py
"""
Error taxonomy for record DML, composite and bulk ingest operations.

Everything raised by the salesforce package derives from SalesforceError, so
callers can catch the whole family at once and still branch on the subclass.
"""
from typing import Any, Dict, List, Optional, Sequence


class SalesforceError(Exception):
    """Base class. `job_ids` is filled in by bulk operations once a job exists."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.job_ids: List[str] = []


class SalesforceValidationError(SalesforceError):
    """Bad input detected before any network call was made."""
    pass


class SubrequestLimitError(SalesforceValidationError):
    """A composite request would need more subrequests than the platform allows."""

    def __init__(self, number_of_batches: int, maximum: int):
        super().__init__(
            f"{number_of_batches} subrequests exceed max of {maximum}. "
            f"max records = {maximum} * (batch size)"
        )
        self.number_of_batches = number_of_batches
        self.maximum = maximum


class EncodingError(SalesforceError):
    """A JSON or CSV payload could not be marshalled."""
    pass


class TransportError(SalesforceError):
    """The service could not be reached (network issue, timeout, ...)."""
    pass


class APIError(SalesforceError):
    """The service answered with an unexpected HTTP status."""

    def __init__(self, status_code: int, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []

    def __str__(self) -> str:
        return f"{self.status_code}: {self.message}"


class RecordError(SalesforceError):
    """A single record the service rejected inside an otherwise successful call."""

    def __init__(self, status_code: str, message: str, record_id: Optional[str] = None,
                 fields: Optional[List[str]] = None):
        rendered = f"{status_code}: {message} {record_id or ''}".rstrip()
        super().__init__(rendered)
        self.status_code = status_code
        self.detail = message
        self.record_id = record_id
        self.fields = fields or []


class AggregateError(SalesforceError):
    """
    Several failures merged into one error value.

    `errors` keeps every cause in the order it was observed, `results` holds the
    per-record results that were collected before the error was raised.
    """

    def __init__(self, errors: Sequence[Exception], results: Optional[List[Any]] = None):
        self.errors: List[Exception] = list(errors)
        super().__init__("\n".join(str(e) for e in self.errors))
        self.results = results or []

    @property
    def messages(self) -> List[str]:
        return [str(e) for e in self.errors]

    def __len__(self) -> int:
        return len(self.errors)


class JobError(SalesforceError):
    """A bulk ingest job failed, was aborted, or reported failed records."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.job_id = job_id
        if job_id:
            self.job_ids.append(job_id)


class JobTimeoutError(JobError):
    """Polling gave up before the job reached a terminal state."""
    pass
