from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from agentdesk.domain.models import AuditEvent, utc_now
from agentdesk.persistence.db import SessionLocal
from agentdesk.services.tenancy import Principal


logger = logging.getLogger(__name__)

# Credentials and customer text never land in audit rows.
_SENSITIVE_KEY = re.compile(r"api_key|authorization|token|secret|password|text|content", re.IGNORECASE)
REDACTED = "[REDACTED]"


@dataclass(frozen=True)
class RequestContext:
    request_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


def sanitize_metadata(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            str(key): REDACTED if _SENSITIVE_KEY.search(str(key)) else sanitize_metadata(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_metadata(item) for item in value]
    return value


def get_request_context(request: Request | None) -> RequestContext:
    if request is None:
        return RequestContext()
    return RequestContext(
        request_id=getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id"),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


async def _persist(session: AsyncSession, event: AuditEvent, *, commit: bool) -> None:
    session.add(event)
    if commit:
        await session.commit()


async def record_event(
    *,
    session: AsyncSession | None = None,
    tenant_id: str | None,
    actor_type: str,
    actor_id: str | None,
    actor_role: str | None,
    event_type: str,
    outcome: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    context: RequestContext | None = None,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
    commit: bool = False,
    best_effort: bool = True,
) -> None:
    """Append one audit row.

    Without a session the row is written through its own short-lived session.
    With ``best_effort`` a store failure is logged and swallowed so the audited
    operation itself is not failed after the fact.
    """
    context = context or RequestContext()
    event = AuditEvent(
        occurred_at=utc_now(),
        tenant_id=tenant_id,
        actor_type=actor_type,
        actor_id=actor_id,
        actor_role=actor_role,
        event_type=event_type,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=context.request_id,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        metadata_json=sanitize_metadata(metadata or {}),
        error_code=error_code,
    )
    try:
        if session is None:
            async with SessionLocal() as own_session:
                await _persist(own_session, event, commit=True)
        else:
            await _persist(session, event, commit=commit)
    except SQLAlchemyError:
        if session is not None and commit:
            await session.rollback()
        if not best_effort:
            logger.error("audit_write_failed event_type=%s request_id=%s", event_type, context.request_id)
            raise
        logger.warning(
            "audit_write_failed event_type=%s request_id=%s", event_type, context.request_id, exc_info=True
        )


async def record_principal_event(
    *,
    session: AsyncSession | None = None,
    principal: Principal,
    event_type: str,
    resource_type: str,
    resource_id: str | None,
    tenant_id: str | None = None,
    request: Request | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    # Successful mutations are audited after the business commit, never inside it.
    await record_event(
        session=session,
        tenant_id=tenant_id or principal.tenant_id,
        actor_type=principal.auth_method,
        actor_id=principal.api_key_id,
        actor_role=principal.role.value,
        event_type=event_type,
        outcome="success",
        resource_type=resource_type,
        resource_id=resource_id,
        context=get_request_context(request),
        metadata=metadata,
        commit=True,
    )
