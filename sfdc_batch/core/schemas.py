# sfdc_batch/core/schemas.py
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# --- Salesforce wire models ---

class SalesforceErrorMessage(BaseModel):
    """One error entry, either per-record (statusCode) or top-level (errorCode)."""
    model_config = ConfigDict(extra="allow")

    message: str = ""
    statusCode: Optional[str] = None
    errorCode: Optional[str] = None
    fields: List[str] = Field(default_factory=list)

    @property
    def code(self) -> str:
        return self.statusCode or self.errorCode or "UNKNOWN_ERROR"


class SalesforceResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    success: bool = False
    created: Optional[bool] = None
    errors: List[SalesforceErrorMessage] = Field(default_factory=list)


class SalesforceResults(BaseModel):
    results: List[SalesforceResult] = Field(default_factory=list)


class CompositeSubRequest(BaseModel):
    method: str
    url: str
    referenceId: str
    body: Optional[Dict[str, Any]] = None


class CompositeRequest(BaseModel):
    allOrNone: bool = False
    compositeRequest: List[CompositeSubRequest] = Field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        # Body-less subrequests (deletes) must not send "body": null
        return self.model_dump(exclude_none=True)


class CompositeSubResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    body: Any = None
    httpHeaders: Dict[str, Any] = Field(default_factory=dict)
    httpStatusCode: int
    referenceId: str


class CompositeResponse(BaseModel):
    compositeResponse: List[CompositeSubResponse] = Field(default_factory=list)


# --- Bulk API 2.0 models ---

class JobState(str, Enum):
    OPEN = "Open"
    UPLOAD_COMPLETE = "UploadComplete"
    IN_PROGRESS = "InProgress"
    JOB_COMPLETE = "JobComplete"
    FAILED = "Failed"
    ABORTED = "Aborted"


class BulkOperation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    UPSERT = "upsert"
    DELETE = "delete"


class BulkJobInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = ""
    state: JobState
    object: Optional[str] = None
    operation: Optional[BulkOperation] = None
    externalIdFieldName: Optional[str] = None
    errorMessage: Optional[str] = None
    numberRecordsProcessed: int = 0
    numberRecordsFailed: int = 0


class BulkJobResults(BaseModel):
    job: BulkJobInfo
    successful_records: List[Dict[str, Any]] = Field(default_factory=list)
    failed_records: List[Dict[str, Any]] = Field(default_factory=list)


# --- Request Schemas (HTTP surface) ---

class ExecutionMode(str, Enum):
    SINGLE = "single"
    COLLECTION = "collection"
    COMPOSITE = "composite"


class RecordOperationPayload(BaseModel):
    object_name: str = Field(..., description="The API name of the Salesforce SObject (e.g., Account, MyCustomObject__c).")
    records: List[Dict[str, Any]] = Field(..., description="Records to process, as field API name -> value mappings.")
    mode: ExecutionMode = Field(ExecutionMode.COLLECTION, description="single: one call per record, collection: sObject Collections per batch, composite: one composite request.")
    external_id_field: Optional[str] = Field(None, description="The API name of the external ID field, used for upsert operations.")
    batch_size: int = Field(200, description="Records per collection batch / composite subrequest (1-200).")
    all_or_none: bool = Field(False, description="Roll back the whole batch when any record fails.")

    @field_validator("object_name")
    @classmethod
    def object_name_must_be_valid(cls, v):
        if not v or not v.strip():
            raise ValueError("object_name must be a non-empty string")
        return v

    @field_validator("records")
    @classmethod
    def records_must_not_be_empty(cls, v):
        if not v:
            raise ValueError("Records list cannot be empty.")
        return v


class BulkJobSubmitPayload(BaseModel):
    object_name: str = Field(..., description="The API name of the Salesforce SObject.")
    records: List[Dict[str, Any]] = Field(..., description="Records to ingest.")
    external_id_field: Optional[str] = Field(None, description="External ID field API name, required for 'upsert'.")
    batch_size: int = Field(10000, description="Records per ingest job (1-10000).")
    wait_for_results: bool = Field(False, description="Poll each job until it reaches a terminal state.")

    @field_validator("records")
    @classmethod
    def records_must_not_be_empty(cls, v):
        if not v:
            raise ValueError("Records list cannot be empty.")
        return v


# --- Response Schemas ---

class OperationResponse(BaseModel):
    success: bool
    message: str
    results: Optional[List[SalesforceResult]] = None
    errors: Optional[List[str]] = None


class BulkOperationResponse(BaseModel):
    success: bool
    message: str
    job_ids: List[str] = Field(default_factory=list)
    errors: Optional[List[str]] = None


class BulkJobStatusResponse(BaseModel):
    job_id: str
    state: JobState
    operation: Optional[BulkOperation] = None
    object_name: Optional[str] = None
    error_message: Optional[str] = None
    records_processed: int = 0
    records_failed: int = 0
    successful_records: Optional[List[Dict[str, Any]]] = None
    failed_records: Optional[List[Dict[str, Any]]] = None
