from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import true


@dataclass(frozen=True)
class TenantPredicateError(RuntimeError):
    # Surface tenant-scoped queries issued without a tenant id.
    message: str


def require_tenant_id(tenant_id: str | None) -> None:
    if not tenant_id:
        raise TenantPredicateError("Tenant predicate required but tenant_id is missing")


def tenant_predicate(model, tenant_id: str | None) -> object:
    # Build tenant predicates through a single helper to guarantee guard coverage.
    # None means an unscoped (super_admin) read and yields no predicate.
    if tenant_id is None:
        return true()
    require_tenant_id(tenant_id)
    return model.tenant_id == tenant_id
