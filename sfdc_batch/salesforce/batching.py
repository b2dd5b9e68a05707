# sfdc_batch/salesforce/batching.py
"""
Record adaptation and batching.

Callers may hand over plain dicts, pydantic models or dataclasses. Each one
goes through a RecordAdapter first, which yields a fresh field-name -> value
dict (never the caller's object), then batch_records slices the result into
order-preserving batches.
"""
import dataclasses
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, TypeVar

from pydantic import BaseModel

from sfdc_batch.core.errors import SalesforceValidationError

T = TypeVar("T")

Record = Dict[str, Any]


class RecordAdapter(Protocol):
    def adapt(self, obj: Any) -> Record:
        """Return a new field-name -> value mapping for obj or raise SalesforceValidationError."""
        ...


class DefaultRecordAdapter:
    """Adapts mappings, pydantic models and dataclass instances."""

    def adapt(self, obj: Any) -> Record:
        if isinstance(obj, Mapping):
            record = dict(obj)
        elif isinstance(obj, BaseModel):
            record = obj.model_dump(by_alias=True, exclude_unset=True)
        elif dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            record = dataclasses.asdict(obj)
        else:
            raise SalesforceValidationError(
                f"issue decoding salesforce object, need a key value pair (mapping, pydantic model or dataclass), "
                f"got: {type(obj).__name__}"
            )

        for key in record:
            if not isinstance(key, str):
                raise SalesforceValidationError(f"record field names must be strings, got: {key!r}")
        return record


default_adapter = DefaultRecordAdapter()


def adapt_records(records: Iterable[Any], adapter: Optional[RecordAdapter] = None) -> List[Record]:
    adapter = adapter or default_adapter
    if isinstance(records, (Mapping, str, bytes)) or isinstance(records, BaseModel):
        raise SalesforceValidationError(f"expected a sequence of records, got: {type(records).__name__}")
    return [adapter.adapt(obj) for obj in records]


def validate_batch_size(batch_size: int, maximum: int) -> None:
    if batch_size < 1 or batch_size > maximum:
        raise SalesforceValidationError(
            f"batch size = {batch_size} but must be 1 <= batchSize <= {maximum}"
        )


def batch_records(records: List[T], batch_size: int) -> List[List[T]]:
    """
    Split records into consecutive batches of batch_size; the last one holds the remainder.

    Empty input yields no batches.
    """
    if batch_size <= 0:
        raise SalesforceValidationError(f"batch size must be positive, got {batch_size}")
    return [records[i:i + batch_size] for i in range(0, len(records), batch_size)]


def count_batches(number_of_records: int, batch_size: int) -> int:
    if batch_size <= 0:
        raise SalesforceValidationError(f"batch size must be positive, got {batch_size}")
    return -(-number_of_records // batch_size)
