# sfdc_batch/tests/test_data_handler.py
import pytest

from sfdc_batch.core.errors import EncodingError, SalesforceValidationError
from sfdc_batch.utils.data_handler import (
    collect_field_names,
    convert_records_to_csv_string,
    parse_csv_string_to_records,
    read_records_from_csv_file,
)


def test_convert_records_to_csv_string_basic():
    records = [{"Name": "Test1", "Value": 100}, {"Name": "Test2", "Value": 200}]
    assert convert_records_to_csv_string(records) == "Name,Value\nTest1,100\nTest2,200\n"


def test_convert_records_uses_union_of_fields():
    records = [{"Name": "A"}, {"Name": "B", "Phone": "555"}]
    assert collect_field_names(records) == ["Name", "Phone"]
    assert convert_records_to_csv_string(records) == "Name,Phone\nA,\nB,555\n"


def test_convert_records_formats_none_and_booleans():
    records = [{"Name": "A", "IsActive__c": True, "Description": None}]
    assert convert_records_to_csv_string(records) == "Name,IsActive__c,Description\nA,true,\n"


def test_convert_records_with_field_order():
    records = [{"Name": "A", "Id": "001"}]
    assert convert_records_to_csv_string(records, field_order=["Id", "Name"]) == "Id,Name\n001,A\n"


def test_convert_records_quotes_commas():
    assert convert_records_to_csv_string([{"Name": "Acme, Inc."}]) == 'Name\n"Acme, Inc."\n'


def test_convert_empty_records():
    assert convert_records_to_csv_string([]) == ""
    assert convert_records_to_csv_string([{}]) == ""


def test_convert_records_rejects_nested_values():
    with pytest.raises(EncodingError):
        convert_records_to_csv_string([{"Name": "A", "attributes": {"type": "Account"}}])


def test_parse_csv_string_to_records():
    csv_string = '"sf__Id","sf__Error",Name\n"","REQUIRED_FIELD_MISSING:Required fields are missing: [Name]",\n'
    records = parse_csv_string_to_records(csv_string)
    assert len(records) == 1
    assert records[0]["sf__Error"].startswith("REQUIRED_FIELD_MISSING")


def test_parse_empty_csv_string():
    assert parse_csv_string_to_records("") == []
    assert parse_csv_string_to_records("   \n") == []


def test_read_records_from_csv_file(tmp_path):
    path = tmp_path / "accounts.csv"
    path.write_text("Name,Phone\nAcme,\nGlobex,555\n", encoding="utf-8")

    records = read_records_from_csv_file(str(path))
    assert records == [{"Name": "Acme", "Phone": None}, {"Name": "Globex", "Phone": "555"}]


def test_read_records_from_missing_file(tmp_path):
    with pytest.raises(SalesforceValidationError) as exc_info:
        read_records_from_csv_file(str(tmp_path / "missing.csv"))
    assert "Could not read CSV file" in str(exc_info.value)
