from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from rmmsync.apps.api.response import error_response, is_versioned_request
from rmmsync.core.errors import (
    RemoteApiError,
    RemoteAuthError,
    RemoteSourceError,
    RmmSyncError,
    SyncInProgressError,
    TenantInactiveError,
    TenantNotFoundError,
    TenantSlugConflictError,
)
from rmmsync.services.query import InvalidSortError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "REMOTE_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Most specific class first; the first isinstance match wins.
_DOMAIN_ERRORS: tuple[tuple[type[RmmSyncError], int, str], ...] = (
    (TenantNotFoundError, 404, "TENANT_NOT_FOUND"),
    (TenantInactiveError, 409, "TENANT_INACTIVE"),
    (TenantSlugConflictError, 409, "TENANT_SLUG_CONFLICT"),
    (SyncInProgressError, 409, "SYNC_IN_PROGRESS"),
    (RemoteAuthError, 502, "REMOTE_AUTH_FAILED"),
    (RemoteApiError, 502, "REMOTE_API_ERROR"),
    (RemoteSourceError, 502, "REMOTE_ERROR"),
)


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # HTTPException details may be {"code", "message", ...} dicts or plain strings.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def domain_error_status(exc: RmmSyncError) -> tuple[int, str]:
    for error_type, status_code, code in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            return status_code, code
    return 500, "INTERNAL_ERROR"


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def domain_exception_handler(request: Request, exc: RmmSyncError) -> JSONResponse:
    status_code, code = domain_error_status(exc)
    details: dict[str, Any] | None = None
    if isinstance(exc, RemoteApiError) and exc.status_code is not None:
        details = {"remote_status": exc.status_code}
    if status_code >= 500:
        logger.warning("request_failed path=%s code=%s error=%s", request.url.path, code, exc)
    payload = error_response(request=request, code=code, message=str(exc), details=details)
    return JSONResponse(content=payload, status_code=status_code)


async def invalid_sort_exception_handler(request: Request, exc: InvalidSortError) -> JSONResponse:
    payload = error_response(request=request, code="INVALID_SORT", message=str(exc))
    return JSONResponse(content=payload, status_code=422)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
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
    # Stack traces go to the log, never to the client.
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": "Internal Server Error"}, status_code=500)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)
