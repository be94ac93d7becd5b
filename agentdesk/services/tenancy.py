"""Tenant directory: the single authorization seam for tenant-owned entities.

Every service resolves an entity first and then asks :func:`authorize` whether
the acting principal may touch the entity's tenant. A denial on an existing
entity is reported as ``NotFound`` by callers so cross-tenant existence never
leaks; ``Forbidden`` is reserved for role checks.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging

from pydantic import BaseModel

from agentdesk.core.errors import ForbiddenError
from agentdesk.domain.enums import Role
from agentdesk.services.auth.api_keys import role_allows


logger = logging.getLogger(__name__)


class Principal(BaseModel):
    # Authenticated identity handed to the core by the auth layer.
    subject_id: str
    tenant_id: str
    role: Role
    api_key_id: str = "unknown"
    auth_method: str = "api_key"

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN


@dataclass(frozen=True)
class Allowed:
    pass


@dataclass(frozen=True)
class Denied:
    reason: str


AuthorizationDecision = Allowed | Denied


def authorize(principal: Principal, target_tenant: str) -> AuthorizationDecision:
    if principal.role == Role.SUPER_ADMIN:
        return Allowed()
    if principal.tenant_id != target_tenant:
        return Denied(reason="tenant_mismatch")
    return Allowed()


def is_allowed(principal: Principal, target_tenant: str) -> bool:
    decision = authorize(principal, target_tenant)
    if isinstance(decision, Denied):
        logger.info(
            "tenant_access_denied subject=%s tenant=%s target=%s reason=%s",
            principal.subject_id,
            principal.tenant_id,
            target_tenant,
            decision.reason,
        )
        return False
    return True


def scope_tenant(principal: Principal) -> str | None:
    # None means "every tenant" and is only ever produced for super admins.
    return None if principal.is_super_admin else principal.tenant_id


def require_role(principal: Principal, *allowed: Role) -> None:
    # Super admins pass every role gate; otherwise a listed role or a higher rank is required.
    if principal.role == Role.SUPER_ADMIN:
        return
    for role in allowed:
        if role_allows(role=principal.role, minimum_role=role):
            return
    raise ForbiddenError(
        "Insufficient role for this operation",
        details={"required_roles": [role.value for role in allowed]},
    )
