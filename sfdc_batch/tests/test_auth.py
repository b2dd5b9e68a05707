# sfdc_batch/tests/test_auth.py
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from sfdc_batch.core.errors import APIError, SalesforceValidationError, TransportError
from sfdc_batch.salesforce.auth import SalesforceAuth
from sfdc_batch.tests.conftest import INSTANCE_URL, make_response

pytestmark = pytest.mark.asyncio

TOKEN_REPLY = {
    "access_token": "fresh_token",
    "instance_url": INSTANCE_URL,
    "issued_at": "1700000000000",
    "token_type": "Bearer",
}


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_password_flow(mock_post: AsyncMock):
    mock_post.return_value = make_response(200, json=TOKEN_REPLY)
    auth = SalesforceAuth(client_id="cid", client_secret="secret", username="user", password="pw",
                          access_token="", instance_url="")

    assert await auth.get_auth_details() == ("fresh_token", INSTANCE_URL)
    assert mock_post.call_args.kwargs["data"]["grant_type"] == "password"
    assert mock_post.call_args.kwargs["data"]["username"] == "user"


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_client_credentials_flow(mock_post: AsyncMock):
    mock_post.return_value = make_response(200, json=TOKEN_REPLY)
    auth = SalesforceAuth(client_id="cid", client_secret="secret", username="", password="",
                          access_token="", instance_url="")

    await auth.get_auth_details()
    assert mock_post.call_args.kwargs["data"] == {
        "grant_type": "client_credentials", "client_id": "cid", "client_secret": "secret",
    }


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_token_is_cached(mock_post: AsyncMock):
    mock_post.return_value = make_response(200, json=dict(TOKEN_REPLY, issued_at=None))
    auth = SalesforceAuth(client_id="cid", client_secret="secret", access_token="", instance_url="")

    await auth.get_auth_details()
    await auth.get_auth_details()
    assert mock_post.await_count == 1


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_rejected_credentials(mock_post: AsyncMock):
    mock_post.return_value = make_response(
        400, json={"error": "invalid_grant", "error_description": "authentication failure"}
    )
    auth = SalesforceAuth(client_id="cid", client_secret="secret", access_token="", instance_url="")

    with pytest.raises(APIError) as exc_info:
        await auth.get_auth_details()
    assert "authentication failure" in str(exc_info.value)


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_token_endpoint_unreachable(mock_post: AsyncMock):
    mock_post.side_effect = httpx.ConnectError("connection refused")
    auth = SalesforceAuth(client_id="cid", client_secret="secret", access_token="", instance_url="")

    with pytest.raises(TransportError):
        await auth.get_auth_details()


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_handle_401_forces_refresh(mock_post: AsyncMock):
    mock_post.return_value = make_response(200, json=dict(TOKEN_REPLY, issued_at=None))
    auth = SalesforceAuth(client_id="cid", client_secret="secret", access_token="", instance_url="")

    await auth.get_auth_details()
    await auth.handle_401_unauthorized()
    assert mock_post.await_count == 2


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_static_token(mock_post: AsyncMock):
    auth = SalesforceAuth(client_id="", client_secret="", access_token="static", instance_url=INSTANCE_URL)

    assert auth.uses_static_token
    assert await auth.get_auth_details() == ("static", INSTANCE_URL)
    mock_post.assert_not_awaited()


async def test_no_credentials_configured():
    auth = SalesforceAuth(client_id="", client_secret="", access_token="", instance_url="")

    with pytest.raises(SalesforceValidationError):
        await auth.get_auth_details()
