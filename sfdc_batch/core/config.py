# sfdc_batch/core/config.py
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file
load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "SalesforceBatchIntegration"
    APP_VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    DEBUG_MODE: bool = os.getenv("DEBUG_MODE", "False").lower() == "true"

    # Salesforce credentials. Which ones are set decides the auth flow:
    # username+password -> password flow, client id/secret only -> client credentials,
    # access token -> used as is.
    SALESFORCE_CLIENT_ID: Optional[str] = None
    SALESFORCE_CLIENT_SECRET: Optional[str] = None
    SALESFORCE_USERNAME: Optional[str] = None
    SALESFORCE_PASSWORD: Optional[str] = None  # Append the security token if the org requires it
    SALESFORCE_ACCESS_TOKEN: Optional[str] = None
    SALESFORCE_INSTANCE_URL: Optional[str] = None
    SALESFORCE_TOKEN_URL: AnyHttpUrl = "https://login.salesforce.com/services/oauth2/token"
    SALESFORCE_API_VERSION: str = "v62.0"
    SALESFORCE_TOKEN_REFRESH_BUFFER: int = 300  # Seconds before expiry to refresh token

    # Transport
    HTTP_TIMEOUT: float = 60.0
    COMPRESSION_HEADERS: bool = False  # gzip request bodies and ask for gzip responses

    # Platform limits
    COLLECTION_BATCH_SIZE_MAX: int = 200
    BULK_BATCH_SIZE_MAX: int = 10000
    COMPOSITE_SUBREQUEST_MAX: int = 25

    # Bulk job polling (seconds)
    BULK_POLL_INTERVAL: float = 1.0
    BULK_POLL_TIMEOUT: float = 60.0

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FILENAME: Optional[str] = os.getenv("LOG_FILENAME", "sfdc_batch.log")  # None or "" for console only
    LOG_MAX_BYTES: int = 10 * 1024 * 1024  # 10 MB
    LOG_BACKUP_COUNT: int = 5

    @field_validator("SALESFORCE_API_VERSION")
    @classmethod
    def api_version_must_be_prefixed(cls, v: str) -> str:
        if not v:
            raise ValueError("SALESFORCE_API_VERSION cannot be empty")
        return v if v.startswith("v") else f"v{v}"

    @field_validator("COLLECTION_BATCH_SIZE_MAX")
    @classmethod
    def collection_batch_size_within_limit(cls, v: int) -> int:
        if v < 1 or v > 200:
            raise ValueError("COLLECTION_BATCH_SIZE_MAX must be between 1 and 200")
        return v

    @field_validator("BULK_BATCH_SIZE_MAX")
    @classmethod
    def bulk_batch_size_within_limit(cls, v: int) -> int:
        if v < 1 or v > 10000:
            raise ValueError("BULK_BATCH_SIZE_MAX must be between 1 and 10000")
        return v

    @field_validator("BULK_POLL_INTERVAL", "BULK_POLL_TIMEOUT", "HTTP_TIMEOUT")
    @classmethod
    def durations_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("durations must be greater than 0")
        return v


settings = Settings()
