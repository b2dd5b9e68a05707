# sfdc_batch/tests/test_dml.py
import pytest

from sfdc_batch.core.errors import AggregateError, APIError, SalesforceValidationError
from sfdc_batch.salesforce import dml
from sfdc_batch.tests.conftest import make_response

pytestmark = pytest.mark.asyncio


def _ok(*ids):
    return make_response(200, json=[{"id": i, "success": True, "errors": []} for i in ids])


def _record_failure(record_id, code, message):
    return {"id": record_id, "success": False, "errors": [{"statusCode": code, "message": message, "fields": []}]}


# --- Single record operations ---

async def test_insert_one_posts_record_without_id(sf_client):
    sf_client.request.return_value = make_response(201, json={"id": "001NEW", "success": True, "errors": []})

    result = await dml.insert_one(sf_client, "Account", {"Id": "ignored", "Name": "Acme"})

    assert result.id == "001NEW"
    sf_client.request.assert_awaited_once_with(
        "POST", "/sobjects/Account", json_data={"Name": "Acme", "attributes": {"type": "Account"}}
    )


async def test_insert_one_unexpected_status_raises_api_error(sf_client):
    sf_client.request.return_value = make_response(
        400, json=[{"errorCode": "REQUIRED_FIELD_MISSING", "message": "Required fields are missing: [Name]"}]
    )

    with pytest.raises(APIError) as exc_info:
        await dml.insert_one(sf_client, "Account", {"Phone": "555"})

    assert exc_info.value.status_code == 400
    assert "REQUIRED_FIELD_MISSING" in str(exc_info.value)


async def test_update_one_patches_by_id(sf_client):
    sf_client.request.return_value = make_response(204)

    await dml.update_one(sf_client, "Account", {"Id": "001A", "Name": "Renamed"})

    sf_client.request.assert_awaited_once_with(
        "PATCH", "/sobjects/Account/001A", json_data={"Name": "Renamed", "attributes": {"type": "Account"}}
    )


async def test_update_one_requires_id(sf_client):
    with pytest.raises(SalesforceValidationError) as exc_info:
        await dml.update_one(sf_client, "Account", {"Name": "No Id"})

    assert str(exc_info.value) == "salesforce Id not found in Account data"
    sf_client.request.assert_not_awaited()


async def test_update_one_treats_200_as_unexpected(sf_client):
    sf_client.request.return_value = make_response(200, json={})

    with pytest.raises(APIError):
        await dml.update_one(sf_client, "Account", {"Id": "001A", "Name": "Renamed"})


@pytest.mark.parametrize("status_code,created", [(201, True), (200, False)])
async def test_upsert_one_uses_external_id_in_url(sf_client, status_code, created):
    sf_client.request.return_value = make_response(status_code, json={"id": "001A", "success": True, "errors": []})

    result = await dml.upsert_one(
        sf_client, "Account", "External_Id__c", {"Id": "x", "External_Id__c": "EXT-1", "Name": "Acme"}
    )

    assert result.created is created
    sf_client.request.assert_awaited_once_with(
        "PATCH",
        "/sobjects/Account/External_Id__c/EXT-1",
        json_data={"Name": "Acme", "attributes": {"type": "Account"}},
    )


async def test_upsert_one_missing_external_id(sf_client):
    with pytest.raises(SalesforceValidationError) as exc_info:
        await dml.upsert_one(sf_client, "Account", "External_Id__c", {"Name": "Acme"})

    assert "salesforce externalId: External_Id__c not found in Account data" in str(exc_info.value)
    assert "'__c'" in str(exc_info.value)
    sf_client.request.assert_not_awaited()


async def test_delete_one(sf_client):
    sf_client.request.return_value = make_response(204)

    await dml.delete_one(sf_client, "Contact", {"Id": "003A"})

    sf_client.request.assert_awaited_once_with("DELETE", "/sobjects/Contact/003A")


async def test_delete_one_not_found(sf_client):
    sf_client.request.return_value = make_response(
        404, json=[{"errorCode": "NOT_FOUND", "message": "The requested resource does not exist"}]
    )

    with pytest.raises(APIError) as exc_info:
        await dml.delete_one(sf_client, "Contact", {"Id": "003A"})
    assert exc_info.value.status_code == 404


# --- Collection operations ---

async def test_insert_collection_batches_and_strips_id(sf_client):
    records = [{"Id": f"old{i}", "Name": f"Acc {i}"} for i in range(450)]
    sf_client.request.side_effect = [
        _ok(*[f"001{i}" for i in range(200)]),
        _ok(*[f"002{i}" for i in range(200)]),
        _ok(*[f"003{i}" for i in range(50)]),
    ]

    results = await dml.insert_collection(sf_client, "Account", records)

    assert len(results.results) == 450
    calls = sf_client.request.call_args_list
    assert len(calls) == 3
    for call, size in zip(calls, [200, 200, 50]):
        assert call.args == ("POST", "/composite/sobjects/")
        body = call.kwargs["json_data"]
        assert body["allOrNone"] is False
        assert len(body["records"]) == size
        assert all("Id" not in r and r["attributes"] == {"type": "Account"} for r in body["records"])
    # The caller's records are left untouched
    assert records[0] == {"Id": "old0", "Name": "Acc 0"}


async def test_insert_collection_continues_after_failed_batches(sf_client):
    records = [{"Name": f"Acc {i}"} for i in range(5)]
    sf_client.request.side_effect = [
        make_response(200, json=[_record_failure(None, "DUPLICATE_VALUE", "duplicate value found"),
                                 {"id": "001B", "success": True, "errors": []}]),
        make_response(500, json=[{"errorCode": "UNKNOWN_EXCEPTION", "message": "server blew up"}]),
        _ok("001E"),
    ]

    with pytest.raises(AggregateError) as exc_info:
        await dml.insert_collection(sf_client, "Account", records, batch_size=2)

    assert sf_client.request.await_count == 3
    aggregate = exc_info.value
    assert aggregate.messages == [
        "DUPLICATE_VALUE: duplicate value found",
        "500: UNKNOWN_EXCEPTION: server blew up",
    ]
    assert [r.id for r in aggregate.results] == [None, "001B", "001E"]


async def test_update_collection_keeps_id_in_body(sf_client):
    sf_client.request.return_value = _ok("001A")

    await dml.update_collection(sf_client, "Account", [{"Id": "001A", "Name": "Renamed"}], all_or_none=True)

    sf_client.request.assert_awaited_once_with(
        "PATCH",
        "/composite/sobjects/",
        json_data={"allOrNone": True,
                   "records": [{"Id": "001A", "Name": "Renamed", "attributes": {"type": "Account"}}]},
    )


async def test_update_collection_validates_every_record_first(sf_client):
    records = [{"Id": "001A"}, {"Name": "missing id"}]

    with pytest.raises(SalesforceValidationError):
        await dml.update_collection(sf_client, "Account", records)

    sf_client.request.assert_not_awaited()


async def test_upsert_collection_with_one_record_missing_external_id(sf_client):
    records = [{"External_Id__c": f"EXT-{i}", "Name": f"Acc {i}"} for i in range(10)]
    del records[4]["External_Id__c"]

    with pytest.raises(SalesforceValidationError) as exc_info:
        await dml.upsert_collection(sf_client, "Account", "External_Id__c", records)

    assert "External_Id__c" in str(exc_info.value)
    sf_client.request.assert_not_awaited()


async def test_upsert_collection_endpoint(sf_client):
    sf_client.request.return_value = make_response(
        200, json=[{"id": "001A", "success": True, "created": True, "errors": []}]
    )

    results = await dml.upsert_collection(
        sf_client, "Account", "External_Id__c", [{"Id": "001A", "External_Id__c": "EXT-1"}]
    )

    assert results.results[0].created is True
    call = sf_client.request.call_args
    assert call.args == ("PATCH", "/composite/sobjects/Account/External_Id__c")
    assert call.kwargs["json_data"]["records"] == [
        {"External_Id__c": "EXT-1", "attributes": {"type": "Account"}}
    ]


async def test_upsert_collection_requires_external_id_field(sf_client):
    with pytest.raises(SalesforceValidationError):
        await dml.upsert_collection(sf_client, "Account", "", [{"Name": "Acme"}])


async def test_collection_rejects_oversized_batches(sf_client):
    with pytest.raises(SalesforceValidationError) as exc_info:
        await dml.insert_collection(sf_client, "Account", [{"Name": "Acme"}], batch_size=201)

    assert "1 <= batchSize <= 200" in str(exc_info.value)
    sf_client.request.assert_not_awaited()


async def test_delete_collection_puts_ids_in_query(sf_client):
    sf_client.request.side_effect = [_ok("001A", "001B"), _ok("001C")]

    await dml.delete_collection(sf_client, "Account", [{"Id": "001A"}, {"Id": "001B"}, {"Id": "001C"}], batch_size=2)

    calls = sf_client.request.call_args_list
    assert calls[0].args == ("DELETE", "/composite/sobjects/?ids=001A,001B&allOrNone=false")
    assert calls[1].args == ("DELETE", "/composite/sobjects/?ids=001C&allOrNone=false")
    assert calls[0].kwargs["json_data"] is None


async def test_delete_collection_stops_at_first_failed_batch(sf_client):
    sf_client.request.side_effect = [
        make_response(400, json=[{"errorCode": "MALFORMED_ID", "message": "bad id"}]),
        _ok("001C"),
    ]

    with pytest.raises(APIError) as exc_info:
        await dml.delete_collection(sf_client, "Account", [{"Id": "bad"}, {"Id": "001B"}, {"Id": "001C"}], batch_size=2)

    assert "MALFORMED_ID" in str(exc_info.value)
    assert sf_client.request.await_count == 1


async def test_delete_collection_stops_at_first_record_failure(sf_client):
    sf_client.request.side_effect = [
        make_response(200, json=[_record_failure("001A", "ENTITY_IS_DELETED", "entity is deleted")]),
        _ok("001B"),
    ]

    with pytest.raises(AggregateError) as exc_info:
        await dml.delete_collection(sf_client, "Account", [{"Id": "001A"}, {"Id": "001B"}], batch_size=1)

    assert exc_info.value.messages == ["ENTITY_IS_DELETED: entity is deleted 001A"]
    assert sf_client.request.await_count == 1


async def test_collection_with_no_records_sends_nothing(sf_client):
    results = await dml.insert_collection(sf_client, "Account", [])

    assert results.results == []
    sf_client.request.assert_not_awaited()


async def test_malformed_result_entry_does_not_stop_later_batches(sf_client):
    sf_client.request.side_effect = [
        make_response(200, json=["garbage"]),
        _ok("001B"),
    ]

    with pytest.raises(AggregateError) as exc_info:
        await dml.insert_collection(sf_client, "Account", [{"Name": "A"}, {"Name": "B"}], batch_size=1)

    assert sf_client.request.await_count == 2
    assert len(exc_info.value) == 1
    assert isinstance(exc_info.value.errors[0], APIError)
    assert "Unexpected result entry" in exc_info.value.messages[0]
    assert [r.id for r in exc_info.value.results] == ["001B"]
