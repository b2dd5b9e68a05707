# sfdc_batch/utils/data_handler.py
"""CSV encoding and decoding of record sets for Bulk API 2.0 ingest jobs."""
import csv
import logging
from io import StringIO
from typing import Any, Dict, List, Optional

from sfdc_batch.core.config import settings
from sfdc_batch.core.errors import EncodingError, SalesforceValidationError

logger = logging.getLogger(settings.APP_NAME)


def _format_csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple, set)):
        raise EncodingError(f"Cannot encode nested value of type {type(value).__name__} as a CSV cell.")
    return str(value)


def collect_field_names(records: List[Dict[str, Any]]) -> List[str]:
    """Union of all record keys, in first-seen order."""
    fieldnames: List[str] = []
    seen = set()
    for record in records:
        for key in record:
            if key not in seen:
                seen.add(key)
                fieldnames.append(key)
    return fieldnames


def convert_records_to_csv_string(records: List[Dict[str, Any]], field_order: Optional[List[str]] = None) -> str:
    """
    Converts a list of record dictionaries into a CSV formatted string.
    If field_order is provided, it dictates the column order in the CSV.
    Otherwise columns are the union of all record keys, in first-seen order,
    so a field missing from the first record is not silently dropped.
    Raises EncodingError when a value cannot be represented in a CSV cell.
    """
    if not records:
        return ""

    fieldnames = field_order or collect_field_names(records)
    if not fieldnames:
        return ""

    output = StringIO()
    # LF line terminator, matching the lineEnding declared on the ingest job
    writer = csv.DictWriter(output, fieldnames=fieldnames, lineterminator='\n', extrasaction='ignore')
    try:
        writer.writeheader()
        for record in records:
            writer.writerow({name: _format_csv_value(record.get(name)) for name in fieldnames})
    except csv.Error as e:
        raise EncodingError(f"Failed to encode records as CSV: {e}") from e

    return output.getvalue()


def parse_csv_string_to_records(csv_string: str) -> List[Dict[str, Any]]:
    """
    Parses a CSV formatted string into a list of record dictionaries.
    """
    if not csv_string or not csv_string.strip():
        return []

    try:
        reader = csv.DictReader(StringIO(csv_string))
        return [dict(row) for row in reader]
    except csv.Error as e:
        raise EncodingError(f"Failed to decode CSV content: {e}") from e


def read_records_from_csv_file(file_path: str) -> List[Dict[str, Any]]:
    """
    Reads a local CSV file (header row + data rows) into record dictionaries.
    Empty cells become None.
    """
    logger.info(f"Reading records from local CSV file: {file_path}")
    try:
        with open(file_path, 'r', encoding='utf-8-sig', newline='') as f:
            content = f.read()
    except OSError as e:
        logger.error(f"Could not read CSV file {file_path}: {e}")
        raise SalesforceValidationError(f"Could not read CSV file {file_path}: {e}") from e

    records = [
        {k: (v if v != "" else None) for k, v in row.items()}
        for row in parse_csv_string_to_records(content)
    ]
    logger.info(f"Successfully parsed {len(records)} records from CSV file: {file_path}")
    return records
