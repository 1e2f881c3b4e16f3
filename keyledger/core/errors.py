"""Centralized exception handlers and error code to HTTP status mapping."""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

from keyledger.core.exceptions import ErrorCode, LedgerError

logger = logging.getLogger(__name__)

ERROR_STATUS_MAP = {
    ErrorCode.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.KEY_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.USER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.INVALID_HOLDER: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_ACTOR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.KEY_ALREADY_ASSIGNED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NO_OPEN_ASSIGNMENT: status.HTTP_409_CONFLICT,
    ErrorCode.KEY_STILL_ASSIGNED: status.HTTP_409_CONFLICT,
    ErrorCode.DUPLICATE_KEY: status.HTTP_400_BAD_REQUEST,
    ErrorCode.DUPLICATE_EMAIL: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NO_UPDATES: status.HTTP_400_BAD_REQUEST,
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.STORAGE_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_http_status(error_code: ErrorCode) -> int:
    return ERROR_STATUS_MAP.get(error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)


def handle_ledger_error(request: Request, exc: LedgerError) -> JSONResponse:
    """
    Render a domain error as a structured client-facing response.

    Only the error's code, message and type are exposed; ``details`` stay in
    the server log.
    """
    status_code = get_http_status(exc.error_code)
    if status_code >= 500:
        logger.error(
            "%s on %s %s: %s",
            exc.__class__.__name__,
            request.method,
            request.url.path,
            exc.details,
        )

    headers = None
    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}

    return JSONResponse(
        status_code=status_code,
        content={"error": exc.to_dict()},
        headers=headers,
    )


def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and path parameters get the same envelope as domain errors."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = first.get("msg", "Invalid request")
    if field:
        message = f"{field}: {message}"

    return JSONResponse(
        status_code=get_http_status(ErrorCode.VALIDATION_ERROR),
        content={
            "error": {
                "code": ErrorCode.VALIDATION_ERROR.value,
                "message": message,
                "type": "RequestValidationError",
            }
        },
    )


def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unexpected exception on %s %s", request.method, request.url.path
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "type": "InternalServerError",
            }
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LedgerError, handle_ledger_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_exception)
