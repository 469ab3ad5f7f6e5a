"""
Centralized Error Handlers for SyncStream

Global FastAPI exception handlers that return one consistent error body, and
the helpers the WebSocket side uses to report errors to a single connection.
"""

from traceback import format_exc
from typing import Any, Union

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from syncstream.config import settings
from syncstream.exceptions import AppException, ErrorCode, StoreUnavailableException
from syncstream.utils.logging_config import get_logger


logger = get_logger(__name__)


class ErrorResponse:
    """
    Standard error response format.

    Every API error uses:
    {
        "success": false,
        "error": "ERROR_CODE",
        "message": "Human readable message",
        "details": {...},  // optional
        "status_code": 400
    }
    """

    @staticmethod
    def create(
        error_code: Union[ErrorCode, str],
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        response: dict[str, Any] = {
            "success": False,
            "error": error_code.value if isinstance(error_code, ErrorCode) else error_code,
            "message": message,
            "status_code": status_code,
        }
        if details:
            response["details"] = details
        return response


def log_error(
    error: Exception,
    request: Request | None = None,
    level: str = "ERROR",
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Log an error consistently.

    Args:
        error: Exception object
        request: FastAPI Request (optional)
        level: Log level (ERROR, WARNING, INFO)
        extra: Extra log fields
    """
    log_data: dict[str, Any] = {
        "error_type": type(error).__name__,
        "error_message": str(error),
    }

    if request:
        client_host: str | None = None
        if request.client is not None:
            client_host = request.client.host
        log_data.update({
            "method": request.method,
            "url": str(request.url),
            "client": client_host,
        })

    if extra:
        log_data.update(extra)

    if level.upper() == "ERROR":
        logger.opt(exception=error).error("Error occurred", extra=log_data)
    else:
        logger.log(level.upper(), "Error occurred", extra=log_data)


def _error_json(
    error_code: Union[ErrorCode, str],
    message: str,
    status_code: int,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse.create(error_code, message, status_code, details),
        headers=headers,
    )


# Starlette raises these for routing problems (unknown path, wrong method).
_HTTP_STATUS_CODES = {
    status.HTTP_400_BAD_REQUEST: ErrorCode.VALIDATION_ERROR,
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
    status.HTTP_405_METHOD_NOT_ALLOWED: ErrorCode.VALIDATION_ERROR,
    status.HTTP_503_SERVICE_UNAVAILABLE: ErrorCode.SERVICE_UNAVAILABLE,
}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register every exception handler on the FastAPI application.

    Called from main.py.
    """

    @app.exception_handler(StoreUnavailableException)
    async def store_unavailable_handler(
        request: Request, exc: StoreUnavailableException
    ) -> JSONResponse:
        # Room state was left as last persisted; the client may simply retry.
        log_error(exc, request, level="ERROR")
        return _error_json(exc.code, exc.message, exc.status_code, exc.details, headers={"Retry-After": "5"})

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request, exc: AppException
    ) -> JSONResponse:
        log_error(exc, request, level="ERROR" if exc.status_code >= 500 else "WARNING")
        return JSONResponse(status_code=exc.status_code, content={"success": False, **exc.to_dict()})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        log_error(exc, request, level="WARNING")
        return _error_json(
            _HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_SERVER_ERROR),
            str(exc.detail) if exc.detail else "HTTP error",
            exc.status_code,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # Drop the leading "body"/"path"/"query" segment from each location.
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"][1:]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        log_error(exc, request, level="WARNING", extra={"validation_errors": errors})
        return _error_json(
            ErrorCode.VALIDATION_ERROR,
            "Validation error, check the request fields",
            422,
            {"validation_errors": errors},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Anything not caught above. No internals leak outside DEBUG."""
        log_error(exc, request, level="ERROR")
        if settings.DEBUG:
            return _error_json(
                ErrorCode.INTERNAL_SERVER_ERROR,
                f"{type(exc).__name__}: {exc}",
                500,
                {"traceback": format_exc()},
            )
        return _error_json(ErrorCode.INTERNAL_SERVER_ERROR, "Unexpected error, please try again later.", 500)


# ==================== WebSocket Error Handling ====================

class WebSocketErrorHandler:
    """
    Error reporting for WebSocket connections, where a failure is answered
    with an ``error`` frame instead of an HTTP status.
    """

    @staticmethod
    def build_error_message(
        message: str,
        error_code: str = "ERROR",
        details: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return {
            "type": "error",
            "error": error_code,
            "message": message,
            **({"details": details} if details else {}),
        }

    @staticmethod
    def log_websocket_error(
        error: Exception,
        room_id: str | None = None,
        user_id: str | None = None,
        message_type: str | None = None,
    ) -> None:
        """
        Log WebSocket errors in a consistent format.

        Args:
            error: Exception object
            room_id: Room ID (if any)
            user_id: Participant ID (if any)
            message_type: Message type (if any)
        """
        log_data: dict[str, Any] = {
            "error_type": type(error).__name__,
            "error_message": str(error),
        }

        if room_id:
            log_data["room_id"] = room_id
        if user_id:
            log_data["user_id"] = user_id
        if message_type:
            log_data["message_type"] = message_type

        logger.warning("WebSocket error occurred", extra=log_data)
