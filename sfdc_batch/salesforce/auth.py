# sfdc_batch/salesforce/auth.py
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import httpx

from sfdc_batch.core.config import settings
from sfdc_batch.core.errors import APIError, SalesforceValidationError, TransportError

logger = logging.getLogger(settings.APP_NAME)

# Salesforce does not return expires_in for these flows; session length is an org setting.
ASSUMED_SESSION_SECONDS = 2 * 60 * 60


class SalesforceAuth:
    """
    Supplies a bearer token and instance URL to the API client.

    The flow is picked from the configured credentials: OAuth 2.0 password flow
    when username and password are set, client credentials flow when only the
    connected app key/secret are set, otherwise a pre-issued access token.
    Tokens are cached and refreshed shortly before the assumed expiry or when
    the API answers 401.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        access_token: Optional[str] = None,
        instance_url: Optional[str] = None,
        token_url: Optional[str] = None,
    ):
        self.client_id = client_id if client_id is not None else settings.SALESFORCE_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.SALESFORCE_CLIENT_SECRET
        self.username = username if username is not None else settings.SALESFORCE_USERNAME
        self.password = password if password is not None else settings.SALESFORCE_PASSWORD
        self.token_url = str(token_url or settings.SALESFORCE_TOKEN_URL)

        self._access_token: Optional[str] = access_token if access_token is not None else settings.SALESFORCE_ACCESS_TOKEN
        self._instance_url: Optional[str] = instance_url if instance_url is not None else settings.SALESFORCE_INSTANCE_URL
        self._token_expiry: Optional[datetime] = None
        self._lock = asyncio.Lock()

    @property
    def uses_static_token(self) -> bool:
        return not (self.client_id and self.client_secret)

    def _is_token_expired(self) -> bool:
        if not self._access_token or not self._instance_url:
            return True
        if self._token_expiry is None:
            # Static tokens have no known expiry; a 401 is the only signal
            return not self.uses_static_token
        refresh_at = self._token_expiry - timedelta(seconds=settings.SALESFORCE_TOKEN_REFRESH_BUFFER)
        if datetime.now(timezone.utc) >= refresh_at:
            logger.info("Token is close to or past expiry threshold; will attempt refresh.")
            return True
        return False

    def _token_request_payload(self) -> dict:
        if self.username and self.password:
            return {
                'grant_type': 'password',
                'client_id': self.client_id,
                'client_secret': self.client_secret,
                'username': self.username,
                'password': self.password,
            }
        return {
            'grant_type': 'client_credentials',
            'client_id': self.client_id,
            'client_secret': self.client_secret,
        }

    async def authenticate(self) -> None:
        """
        Requests a new access token and caches it with the instance URL.
        Raises TransportError on network failure and APIError on a rejected request.
        """
        if self.uses_static_token:
            if not self._access_token or not self._instance_url:
                raise SalesforceValidationError(
                    "No Salesforce credentials configured: set client id/secret or an access token and instance URL."
                )
            logger.warning("Using a static access token; it cannot be refreshed.")
            return

        payload = self._token_request_payload()
        logger.info(f"Attempting to authenticate with Salesforce ({payload['grant_type']} flow)...")
        async with httpx.AsyncClient(timeout=30.0) as client:
            try:
                response = await client.post(self.token_url, data=payload)
            except httpx.RequestError as e:
                logger.error(f"Salesforce authentication request failed (network issue): {e}")
                raise TransportError(f"Failed to authenticate with Salesforce (network issue): {e.__class__.__name__}") from e

        if response.status_code != 200:
            detail_msg = f"Failed to authenticate with Salesforce (HTTP error {response.status_code})"
            try:
                err_json = response.json()
                if 'error_description' in err_json:
                    detail_msg += f": {err_json['error_description']}"
                elif 'error' in err_json:
                    detail_msg += f": {err_json['error']}"
            except ValueError:
                pass
            logger.error(detail_msg)
            raise APIError(response.status_code, detail_msg)

        auth_response = response.json()
        access_token = auth_response.get('access_token')
        instance_url = auth_response.get('instance_url')
        if not access_token or not instance_url:
            logger.error("Authentication response missing access_token or instance_url.")
            raise APIError(response.status_code, "Salesforce authentication response missing critical data.")

        issued_at_ms = auth_response.get("issued_at")
        if issued_at_ms:
            issued_at = datetime.fromtimestamp(int(issued_at_ms) / 1000.0, tz=timezone.utc)
        else:
            issued_at = datetime.now(timezone.utc)

        self._access_token = access_token
        self._instance_url = instance_url
        self._token_expiry = issued_at + timedelta(seconds=ASSUMED_SESSION_SECONDS)
        logger.info(f"Authentication successful. Instance URL: {instance_url}. Estimated expiry: {self._token_expiry}")

    async def get_auth_details(self) -> Tuple[str, str]:
        """
        Returns (access_token, instance_url), authenticating first if needed.
        """
        async with self._lock:
            if self._is_token_expired():
                await self.authenticate()
        return self._access_token, self._instance_url

    async def handle_401_unauthorized(self) -> None:
        """Forces a token refresh after the API rejected the current session."""
        logger.warning("Received 401 Unauthorized from Salesforce. Forcing token refresh.")
        async with self._lock:
            if not self.uses_static_token:
                self._access_token = None
                self._token_expiry = None
            await self.authenticate()


_auth_instance: Optional[SalesforceAuth] = None


async def get_salesforce_auth_instance() -> SalesforceAuth:
    """
    FastAPI dependency returning the shared SalesforceAuth (and its token cache).
    """
    global _auth_instance
    if _auth_instance is None:
        _auth_instance = SalesforceAuth()
    await _auth_instance.get_auth_details()
    return _auth_instance
