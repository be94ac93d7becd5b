from __future__ import annotations

from typing import AsyncGenerator
import asyncio
import logging
import time

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.core.config import get_settings
from agentdesk.domain.enums import Role
from agentdesk.domain.models import ApiKey, User, as_utc, utc_now
from agentdesk.persistence.db import get_session
from agentdesk.services.audit import get_request_context, record_event
from agentdesk.services.auth.api_keys import hash_api_key, normalize_role
from agentdesk.services.tenancy import Principal


logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class _PrincipalCache:
    """TTL cache of resolved principals keyed by API key hash."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[float, Principal]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key_hash: str) -> Principal | None:
        async with self._lock:
            entry = self._entries.get(key_hash)
            if entry is None:
                return None
            if entry[0] <= time.monotonic():
                del self._entries[key_hash]
                return None
            return entry[1]

    async def put(self, key_hash: str, principal: Principal, ttl_s: int) -> None:
        if ttl_s <= 0:
            return
        async with self._lock:
            self._entries[key_hash] = (time.monotonic() + ttl_s, principal)

    def clear(self) -> None:
        self._entries.clear()


_principal_cache = _PrincipalCache()


def clear_auth_cache() -> None:
    _principal_cache.clear()


def _auth_error(message: str, *, status_code: int = status.HTTP_401_UNAUTHORIZED) -> HTTPException:
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return HTTPException(
            status_code=status_code,
            detail={"code": "AUTH_UNAUTHORIZED", "message": message},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return HTTPException(status_code=status_code, detail={"code": "AUTH_FORBIDDEN", "message": message})


async def _reject(
    db: AsyncSession,
    request: Request,
    message: str,
    *,
    status_code: int = status.HTTP_401_UNAUTHORIZED,
    api_key: ApiKey | None = None,
    event_type: str = "auth.access.failure",
) -> HTTPException:
    """Audit a failed authentication attempt and return the error to raise.

    Only the path and method are recorded; headers may carry credentials.
    """
    error = _auth_error(message, status_code=status_code)
    await record_event(
        session=db,
        tenant_id=api_key.tenant_id if api_key is not None else None,
        actor_type="api_key" if api_key is not None else "anonymous",
        actor_id=api_key.id if api_key is not None else None,
        actor_role=None,
        event_type=event_type,
        outcome="failure",
        resource_type="auth",
        context=get_request_context(request),
        metadata={"path": request.url.path, "method": request.method},
        error_code=error.detail["code"],
        commit=True,
    )
    return error


def _bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    scheme, _, token = header_value.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise ValueError("Missing or invalid bearer token")
    return token


def _dev_principal(request: Request) -> Principal:
    # Header-declared identities are accepted only when dev bypass is switched on.
    tenant_id = request.headers.get("X-Tenant-Id")
    if not tenant_id:
        raise _auth_error("X-Tenant-Id header is required in dev bypass mode")
    try:
        role = normalize_role(request.headers.get("X-Role", Role.ADMIN.value))
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "AUTH_INVALID_ROLE", "message": str(exc)},
        ) from exc
    return Principal(
        subject_id=f"dev-{tenant_id}",
        tenant_id=tenant_id,
        role=role,
        api_key_id="dev-bypass",
        auth_method="dev_bypass",
    )


def _key_problem(api_key: ApiKey, user: User) -> tuple[str, int, str] | None:
    # Returns (message, status, audit event type) for an unusable key.
    if api_key.revoked_at is not None or not user.is_active:
        return "API key is revoked or inactive", status.HTTP_401_UNAUTHORIZED, "auth.access.failure"
    if api_key.expires_at is not None and as_utc(api_key.expires_at) <= utc_now():
        return "API key expired", status.HTTP_401_UNAUTHORIZED, "auth.api_key.expired"
    if api_key.tenant_id != user.tenant_id:
        return "Tenant mismatch for API key", status.HTTP_403_FORBIDDEN, "auth.access.failure"
    return None


async def _touch_last_used(db: AsyncSession, api_key_id: str) -> None:
    try:
        await db.execute(update(ApiKey).where(ApiKey.id == api_key_id).values(last_used_at=utc_now()))
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.warning("api_key_touch_failed key_id=%s", api_key_id, exc_info=True)


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    settings = get_settings()
    try:
        token = _bearer_token(request.headers.get(settings.auth_api_key_header))
    except ValueError as exc:
        raise await _reject(db, request, str(exc)) from exc

    if not settings.auth_enabled or token is None:
        if settings.auth_dev_bypass:
            return _dev_principal(request)
        raise await _reject(db, request, "Missing API key" if settings.auth_enabled else "Authentication disabled")

    key_hash = hash_api_key(token)
    cached = await _principal_cache.get(key_hash)
    if cached is not None:
        return cached

    try:
        row = (
            await db.execute(
                select(ApiKey, User).join(User, ApiKey.user_id == User.id).where(ApiKey.key_hash == key_hash)
            )
        ).first()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "AUTH_UNAVAILABLE", "message": "Authentication unavailable"},
        ) from exc
    if row is None:
        raise await _reject(db, request, "Invalid API key")

    api_key, user = row
    problem = _key_problem(api_key, user)
    if problem is not None:
        message, status_code, event_type = problem
        raise await _reject(
            db, request, message, status_code=status_code, api_key=api_key, event_type=event_type
        )
    try:
        role = normalize_role(user.role)
    except ValueError as exc:
        raise await _reject(
            db, request, str(exc), status_code=status.HTTP_403_FORBIDDEN, api_key=api_key
        ) from exc

    principal = Principal(
        subject_id=user.id,
        tenant_id=user.tenant_id,
        role=role,
        api_key_id=api_key.id,
        auth_method="api_key",
    )
    await _principal_cache.put(key_hash, principal, settings.auth_cache_ttl_s)
    await _touch_last_used(db, api_key.id)
    return principal
