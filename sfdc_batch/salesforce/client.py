# sfdc_batch/salesforce/client.py
import gzip
import json
import logging
from typing import Any, Dict, Optional, Union

import httpx

from sfdc_batch.core.config import settings
from sfdc_batch.core.errors import EncodingError, TransportError
from sfdc_batch.salesforce.auth import SalesforceAuth, get_salesforce_auth_instance

logger = logging.getLogger(settings.APP_NAME)

JSON_TYPE = "application/json"
CSV_TYPE = "text/csv"

# Total attempts = 1 (first try) + MAX_RETRIES, only for 401 after a token refresh
MAX_RETRIES = 1


class SalesforceApiClient:
    """
    Thin asynchronous transport over the Salesforce data API.

    Adds authentication and content headers, encodes JSON bodies, optionally
    gzips them, and retries once with a fresh token on 401. Any other status
    is handed back untouched: deciding what counts as success is up to the
    caller, since each endpoint has its own expected status.
    """

    def __init__(
        self,
        auth_instance: SalesforceAuth,
        http_client: Optional[httpx.AsyncClient] = None,
        api_version: Optional[str] = None,
        compress: Optional[bool] = None,
        timeout: Optional[float] = None,
    ):
        self.auth = auth_instance
        self.api_version = api_version or settings.SALESFORCE_API_VERSION
        self.compress = settings.COMPRESSION_HEADERS if compress is None else compress
        self.timeout = timeout or settings.HTTP_TIMEOUT
        self._http_client = http_client

    def data_path(self, endpoint: str) -> str:
        """Server-relative path of a data API endpoint, as composite subrequests expect it."""
        return f"/services/data/{self.api_version}{endpoint}"

    async def _get_base_url(self) -> str:
        _, instance_url = await self.auth.get_auth_details()
        return f"{instance_url.rstrip('/')}/services/data/{self.api_version}"

    async def _get_headers(self, content_type: str, accept: Optional[str]) -> Dict[str, str]:
        access_token, _ = await self.auth.get_auth_details()
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": content_type,
            "Accept": accept or content_type,
            "User-Agent": f"{settings.APP_NAME}/{settings.APP_VERSION}",
            "Sforce-Call-Options": f"client={settings.APP_NAME}/{settings.APP_VERSION}",
        }
        if self.compress:
            headers["Content-Encoding"] = "gzip"
            headers["Accept-Encoding"] = "gzip"
        return headers

    def _encode_body(self, json_data: Any, content: Optional[Union[str, bytes]]) -> Optional[bytes]:
        if json_data is not None:
            try:
                body = json.dumps(json_data).encode("utf-8")
            except (TypeError, ValueError) as e:
                raise EncodingError(f"Failed to encode request body as JSON: {e}") from e
        elif isinstance(content, str):
            try:
                body = content.encode("utf-8")
            except UnicodeEncodeError as e:
                raise EncodingError(f"Failed to encode request body as UTF-8: {e}") from e
        elif content is not None:
            body = content
        else:
            return None
        if self.compress:
            body = gzip.compress(body)
        return body

    async def request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[Any] = None,
        content: Optional[Union[str, bytes]] = None,
        content_type: str = JSON_TYPE,
        accept: Optional[str] = None,
    ) -> httpx.Response:
        """
        Sends one request to `{instance_url}/services/data/{version}{endpoint}`.
        Raises EncodingError for unserialisable bodies and TransportError when the
        service cannot be reached.
        """
        body = self._encode_body(json_data, content)
        if self._http_client is not None:
            return await self._send(self._http_client, method, endpoint, body, content_type, accept)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._send(client, method, endpoint, body, content_type, accept)

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        endpoint: str,
        body: Optional[bytes],
        content_type: str,
        accept: Optional[str],
    ) -> httpx.Response:
        url = f"{await self._get_base_url()}{endpoint}"
        for attempt in range(MAX_RETRIES + 1):
            headers = await self._get_headers(content_type, accept)
            try:
                logger.debug(f"Salesforce API Request: {method} {url} | Body bytes: {len(body) if body else 0}")
                response = await client.request(method, url, headers=headers, content=body)
                logger.debug(f"Salesforce API Response: {response.status_code} {response.text[:500]}")
            except httpx.RequestError as e:
                logger.error(f"Salesforce API RequestError: {e.__class__.__name__} on {method} {url}. Detail: {e}")
                raise TransportError(f"Salesforce API communication error: {e.__class__.__name__}: {e}") from e

            if response.status_code == 401 and attempt < MAX_RETRIES:
                logger.warning(f"401 Unauthorized from Salesforce. Attempt {attempt + 1}/{MAX_RETRIES + 1}. Refreshing token...")
                await self.auth.handle_401_unauthorized()
                continue
            return response
        return response


async def get_salesforce_api_client() -> SalesforceApiClient:
    """FastAPI dependency to get an instance of SalesforceApiClient."""
    auth_instance = await get_salesforce_auth_instance()
    return SalesforceApiClient(auth_instance)
