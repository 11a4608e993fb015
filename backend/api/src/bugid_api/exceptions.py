"""FastAPI exception handlers for converting WebhookError to HTTP responses.

The ErrorCode-to-HTTP status mapping is the boundary contract with the
billing provider:
- 400 Bad Request: payload cannot be applied (missing user or event id)
- 401 Unauthorized: bearer credential missing, malformed or wrong
- 404 Not Found: internal API lookups
- 409 Conflict: another delivery is still applying the event; retried
- 500 Internal Server Error: secret not configured or store failure;
  the provider retries these

Usage:
    from bugid_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from bugid_shared.models.errors import ErrorCode, WebhookError

logger = logging.getLogger(__name__)

# Map ErrorCode to HTTP status codes
ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.WEBHOOK_NOT_CONFIGURED: HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.UNAUTHENTICATED: HTTP_401_UNAUTHORIZED,
    ErrorCode.MALFORMED_PAYLOAD: HTTP_400_BAD_REQUEST,
    ErrorCode.PERSISTENCE_FAILED: HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.EVENT_IN_PROGRESS: HTTP_409_CONFLICT,
    ErrorCode.ENTITLEMENT_NOT_FOUND: HTTP_404_NOT_FOUND,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode.

    Args:
        code: The ErrorCode to map

    Returns:
        HTTP status code, defaults to 500 if not explicitly mapped.
    """
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_500_INTERNAL_SERVER_ERROR)


async def webhook_error_handler(request: Request, exc: WebhookError) -> JSONResponse:
    """Handle WebhookError exceptions and convert to JSON response.

    4xx rejections log at WARNING, 5xx failures at ERROR. Only the error
    code and the safe details are logged.
    """
    status_code = get_http_status_for_error(exc.code)

    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(
            "%s %s -> %d %s %s",
            request.method,
            request.url.path,
            status_code,
            exc.code.value,
            exc.details or {},
        )
    else:
        logger.warning(
            "%s %s -> %d %s",
            request.method,
            request.url.path,
            status_code,
            exc.code.value,
        )

    return JSONResponse(
        status_code=status_code,
        content=exc.to_error_response().model_dump(mode="json"),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions with a generic error response.

    The stack trace goes to the log, never to the caller.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    error_response = {
        "success": False,
        "error_code": "ERR_INTERNAL",
        "message": "An unexpected error occurred",
        "recovery": "Retry delivery later",
        "details": None,
    }

    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Args:
        app: The FastAPI application instance.
    """
    app.add_exception_handler(WebhookError, webhook_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
