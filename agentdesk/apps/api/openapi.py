from __future__ import annotations

from typing import Any

from agentdesk.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _response(
        "Unauthorized",
        _error_example(code="AUTH_UNAUTHORIZED", message="Missing or invalid bearer token"),
    ),
    403: _response(
        "Forbidden",
        _error_example(
            code="FORBIDDEN",
            message="Insufficient role for this operation",
            details={"required_roles": ["owner"]},
        ),
    ),
    404: _response(
        "Not found",
        _error_example(code="NOT_FOUND", message="Agent not found", details={"agent_id": "a1"}),
    ),
    409: _response(
        "Conflict",
        _error_example(
            code="CONFLICT",
            message="Conversation is resolved; start a new one with a customer message",
        ),
    ),
    422: _response(
        "Validation error",
        _error_example(code="INVALID_INPUT", message="Message content must not be empty"),
    ),
    500: _response(
        "Internal server error",
        _error_example(code="INTERNAL_ERROR", message="Internal server error"),
    ),
    503: _response(
        "Service unavailable",
        _error_example(code="UNAVAILABLE", message="Database error while appending message"),
    ),
}
