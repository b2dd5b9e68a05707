# sfdc_batch/app/main.py
import logging
import time
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sfdc_batch.app.routers import records as records_router
from sfdc_batch.core.config import settings
from sfdc_batch.core.errors import (
    AggregateError,
    APIError,
    JobError,
    JobTimeoutError,
    SalesforceError,
    SalesforceValidationError,
    TransportError,
)
from sfdc_batch.utils.logger import setup_logging

setup_logging()
logger = logging.getLogger(settings.APP_NAME)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Batch, composite and Bulk API 2.0 record operations against Salesforce.",
    openapi_url=f"{settings.API_V1_STR}/openapi.json"
)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.perf_counter()
    response = await call_next(request)
    process_time = time.perf_counter() - start_time
    response.headers["X-Process-Time"] = f"{process_time:.4f}"
    logger.info(
        f"Request: {request.method} {request.url.path} - Status: {response.status_code} - Process Time: {process_time:.4f}s"
    )
    return response


def _status_for(exc: SalesforceError) -> int:
    if isinstance(exc, SalesforceValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, APIError):
        return exc.status_code if 400 <= exc.status_code < 500 else status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, TransportError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, AggregateError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, JobTimeoutError):
        return status.HTTP_504_GATEWAY_TIMEOUT
    if isinstance(exc, JobError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(SalesforceError)
async def salesforce_exception_handler(request: Request, exc: SalesforceError):
    status_code = _status_for(exc)
    logger.error(f"{exc.__class__.__name__} for request {request.method} {request.url.path}: {exc}")
    content = {"success": False, "detail": str(exc), "error_type": exc.__class__.__name__}
    if isinstance(exc, AggregateError):
        content["errors"] = exc.messages
    if exc.job_ids:
        content["job_ids"] = exc.job_ids
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error: {exc.errors()} for request: {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc.errors())},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc} for request: {request.method} {request.url.path}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected error occurred. Please try again later."},
    )


app.include_router(records_router.router, prefix=settings.API_V1_STR, tags=["Salesforce Record Operations"])


@app.get("/health", tags=["Health"])
async def health_check():
    return {
        "status": "healthy",
        "application": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
