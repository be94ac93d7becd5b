from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from agentdesk.apps.api.response import error_response, is_versioned_request
from agentdesk.core.errors import (
    AgentDeskError,
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    UnavailableError,
)
from agentdesk.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Most specific class first; subclasses of InvalidInputError map to 422 too.
_DOMAIN_STATUS: tuple[tuple[type[AgentDeskError], int], ...] = (
    (InvalidInputError, 422),
    (NotFoundError, 404),
    (ForbiddenError, 403),
    (ConflictError, 409),
    (UnavailableError, 503),
)


def status_for_error(exc: AgentDeskError) -> int:
    for error_type, status_code in _DOMAIN_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def _respond(
    request: Request,
    status_code: int,
    *,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    legacy_detail: Any,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    # Unversioned aliases keep FastAPI's bare {"detail": ...} body.
    if is_versioned_request(request):
        content = error_response(request=request, code=code, message=message, details=details)
    else:
        content = {"detail": legacy_detail}
    return JSONResponse(content=content, status_code=status_code, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    return _respond(
        request,
        exc.status_code,
        code=code,
        message=message,
        details=details,
        legacy_detail=exc.detail,
        headers=getattr(exc, "headers", None),
    )


async def agentdesk_exception_handler(request: Request, exc: AgentDeskError) -> JSONResponse:
    # Domain errors carry their own stable code; only the status is decided here.
    status_code = status_for_error(exc)
    if status_code >= 500:
        logger.warning("request_failed path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
    details = jsonable_encoder(exc.details) if exc.details else None
    legacy: dict[str, Any] = {"code": exc.code, "message": exc.message}
    if details:
        legacy["details"] = details
    return _respond(
        request, status_code, code=exc.code, message=exc.message, details=details, legacy_detail=legacy
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = jsonable_encoder(exc.errors())
    return _respond(
        request,
        422,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": errors},
        legacy_detail=errors,
    )


async def tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError) -> JSONResponse:
    # A tenant-scoped query without a tenant is a server bug, not a client error.
    logger.error("tenant_predicate_missing path=%s message=%s", request.url.path, exc.message)
    return _respond(
        request,
        500,
        code="TENANT_PREDICATE_REQUIRED",
        message="Internal server error",
        legacy_detail="Internal Server Error",
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("request_unhandled_error path=%s", request.url.path, exc_info=exc)
    return _respond(
        request, 500, code="INTERNAL_ERROR", message="Internal server error", legacy_detail="Internal Server Error"
    )
