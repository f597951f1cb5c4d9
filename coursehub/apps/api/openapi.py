from __future__ import annotations

from typing import Any

from coursehub.apps.api.response import API_VERSION, ErrorEnvelope


def _error_response(*, description: str, code: str, message: str) -> dict[str, Any]:
    # Document the shared error envelope once per status code.
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": {
                    "error": {"code": code, "message": message},
                    "meta": {"request_id": "req_example", "api_version": API_VERSION},
                }
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _error_response(description="Unauthorized", code="AUTH_UNAUTHORIZED", message="Missing or invalid bearer token"),
    403: _error_response(description="Forbidden", code="AUTH_FORBIDDEN", message="cross-tenant access not allowed"),
    404: _error_response(description="Not found", code="NOT_FOUND", message="Resource not found"),
    422: _error_response(description="Validation error", code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    503: _error_response(
        description="Dependency unavailable", code="SERVICE_UNAVAILABLE", message="Service temporarily unavailable"
    ),
}
