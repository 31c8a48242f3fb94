from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from taskflow.apps.api.response import error_response, is_versioned_request
from taskflow.core.errors import (
    BackendAuthError,
    BackendConfigError,
    BackendError,
    BackendUnavailableError,
    BulkActionValidationError,
    ExpiredError,
    LedgerConflictError,
    NotFoundError,
    ResolutionError,
    TaskflowError,
    TooManyItemsError,
    error_code_for,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    410: "GONE",
    413: "PAYLOAD_TOO_LARGE",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Most specific first; the first isinstance match wins.
_STATUS_BY_ERROR: tuple[tuple[type[TaskflowError], int], ...] = (
    (ResolutionError, 503),
    (ExpiredError, 410),
    (NotFoundError, 404),
    (TooManyItemsError, 413),
    (LedgerConflictError, 409),
    (BulkActionValidationError, 422),
    (BackendUnavailableError, 503),
    (BackendAuthError, 502),
    (BackendConfigError, 400),
    (BackendError, 502),
)


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from FastAPI HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def status_for(exc: TaskflowError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _error_details(exc: TaskflowError) -> dict[str, Any] | None:
    # Context callers need to display or log the failure.
    if isinstance(exc, ResolutionError):
        return {"entity_id": exc.entity_id, "attempted_steps": exc.attempted_steps}
    if isinstance(exc, ExpiredError):
        return {"record_id": exc.record_id, "recovery_deadline": exc.recovery_deadline.isoformat()}
    if isinstance(exc, NotFoundError):
        return {"resource_type": exc.resource_type, "resource_id": exc.resource_id}
    if isinstance(exc, TooManyItemsError):
        return {"action_type": exc.action_type, "count": exc.count, "limit": exc.limit}
    if isinstance(exc, LedgerConflictError):
        return {"record_id": exc.record_id}
    return None


async def taskflow_exception_handler(request: Request, exc: TaskflowError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.warning("request_failed path=%s error=%s", request.url.path, type(exc).__name__)
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": str(exc)}, status_code=status_code)
    payload = error_response(
        request=request,
        code=error_code_for(exc),
        message=str(exc),
        details=_error_details(exc),
    )
    return JSONResponse(content=payload, status_code=status_code)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Unknown routes and method mismatches come through Starlette directly.
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.errors()}, status_code=422)
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": exc.errors()},
    )
    return JSONResponse(content=payload, status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception("unhandled_error path=%s", request.url.path, exc_info=exc)
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": "Internal Server Error"}, status_code=500)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
