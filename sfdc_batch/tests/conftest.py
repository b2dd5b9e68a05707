# sfdc_batch/tests/conftest.py
import os
from typing import Any, Generator, Optional
from unittest.mock import AsyncMock

import httpx
import pytest

# Settings are read at import time, so the environment is seeded before any
# sfdc_batch module is imported.
os.environ["SALESFORCE_CLIENT_ID"] = "test_client_id"
os.environ["SALESFORCE_CLIENT_SECRET"] = "test_client_secret"
os.environ["SALESFORCE_USERNAME"] = "test_username"
os.environ["SALESFORCE_PASSWORD"] = "test_password"
os.environ["SALESFORCE_API_VERSION"] = "v62.0"
os.environ["DEBUG_MODE"] = "True"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["LOG_FILENAME"] = ""  # No file logging during tests

from fastapi.testclient import TestClient  # noqa: E402

from sfdc_batch.salesforce.auth import SalesforceAuth  # noqa: E402
from sfdc_batch.salesforce.client import SalesforceApiClient, get_salesforce_api_client  # noqa: E402

INSTANCE_URL = "https://test.my.salesforce.com"


def make_response(status_code: int, json: Any = None, text: Optional[str] = None) -> httpx.Response:
    """A canned Salesforce reply."""
    if json is not None:
        return httpx.Response(status_code, json=json)
    if text is not None:
        return httpx.Response(status_code, text=text)
    return httpx.Response(status_code)


@pytest.fixture
def mock_salesforce_auth_instance():
    mock_auth = AsyncMock(spec=SalesforceAuth)
    mock_auth.get_auth_details = AsyncMock(return_value=("test_access_token", INSTANCE_URL))
    mock_auth.handle_401_unauthorized = AsyncMock()
    return mock_auth


@pytest.fixture
def sf_client(mock_salesforce_auth_instance: AsyncMock) -> SalesforceApiClient:
    """
    A real client whose transport call is an AsyncMock. Tests queue replies with
    `sf_client.request.side_effect = [...]` and inspect `sf_client.request.call_args_list`.
    """
    client = SalesforceApiClient(mock_salesforce_auth_instance, compress=False)
    client.request = AsyncMock()
    return client


@pytest.fixture
def mock_salesforce_api_client() -> AsyncMock:
    return AsyncMock(spec=SalesforceApiClient)


@pytest.fixture
def client(mock_salesforce_api_client: AsyncMock) -> Generator[TestClient, Any, None]:
    """
    Test client for the FastAPI application with the Salesforce client dependency overridden.
    """
    from sfdc_batch.app.main import app as fastapi_app

    async def mock_get_api_client():
        return mock_salesforce_api_client

    fastapi_app.dependency_overrides[get_salesforce_api_client] = mock_get_api_client
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides = {}
