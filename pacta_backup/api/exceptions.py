"""Mapping of backup engine errors to HTTP responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_429_TOO_MANY_REQUESTS,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from ..backup.errors import (
    BackupEngineError,
    BusyError,
    DeletionBlockedError,
    IntegrityError,
    NotFoundError,
    QuotaExceededError,
    RestoreConflictError,
    RestoreError,
    ValidationError,
)
from .._utils import logger

# Most specific classes first
ERROR_STATUS_CODES = (
    (QuotaExceededError, HTTP_429_TOO_MANY_REQUESTS),
    (ValidationError, HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, HTTP_404_NOT_FOUND),
    (BusyError, HTTP_409_CONFLICT),
    (RestoreConflictError, HTTP_409_CONFLICT),
    (DeletionBlockedError, HTTP_403_FORBIDDEN),
    (IntegrityError, HTTP_422_UNPROCESSABLE_ENTITY),
)


def status_code_for(error: BackupEngineError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return HTTP_500_INTERNAL_SERVER_ERROR


async def backup_engine_error_handler(request: Request, exc: BackupEngineError) -> JSONResponse:
    status_code = status_code_for(exc)
    body = {"error": type(exc).__name__, "detail": str(exc)}

    if isinstance(exc, ValidationError):
        body["errors"] = exc.errors
    if isinstance(exc, RestoreError):
        body["state"] = exc.state
        body["restoreId"] = exc.restore_id
        body["inconsistent"] = exc.inconsistent

    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BackupEngineError, backup_engine_error_handler)
