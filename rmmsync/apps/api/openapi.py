from __future__ import annotations

from typing import Any

from rmmsync.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message, details=details)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _response("Unauthorized", "AUTH_UNAUTHORIZED", "Missing or invalid bearer token"),
    404: _response("Not found", "TENANT_NOT_FOUND", "Tenant 42 not found"),
    409: _response("Conflict", "SYNC_IN_PROGRESS", "Sync already in progress for tenant 42"),
    422: _response("Validation error", "REQUEST_VALIDATION_ERROR", "Validation error"),
    500: _response("Internal server error", "INTERNAL_ERROR", "Internal server error"),
    502: _response(
        "Remote RMM API failure",
        "REMOTE_API_ERROR",
        "API Error 503: Service Unavailable",
        details={"remote_status": 503},
    ),
}
