from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from agentdesk.domain.enums import Role
from agentdesk.domain.models import ApiKey, User, utc_now
from agentdesk.persistence.db import SessionLocal
from agentdesk.services.auth.api_keys import generate_api_key, normalize_role
from agentdesk.services.tenancy import Principal


def make_principal(tenant_id: str, role: str | Role = Role.OWNER) -> Principal:
    # In-process principal for service-level tests that bypass HTTP auth.
    normalized = normalize_role(role)
    return Principal(
        subject_id=f"user-{tenant_id}-{normalized.value}",
        tenant_id=tenant_id,
        role=normalized,
        api_key_id=f"key-{tenant_id}-{normalized.value}",
    )


async def create_test_api_key(
    *,
    tenant_id: str,
    role: str,
    name: str = "test-key",
    user_active: bool = True,
    key_revoked: bool = False,
    key_expires_at: datetime | None = None,
) -> tuple[str, dict[str, str], str, str]:
    # Provision a user + API key pair for integration tests.
    normalized_role = normalize_role(role)
    user_id = uuid4().hex
    key_id, raw_key, key_prefix, key_hash = generate_api_key()

    async with SessionLocal() as session:
        session.add(
            User(
                id=user_id,
                tenant_id=tenant_id,
                email=None,
                role=normalized_role.value,
                is_active=user_active,
            )
        )
        await session.flush()
        session.add(
            ApiKey(
                id=key_id,
                user_id=user_id,
                tenant_id=tenant_id,
                key_prefix=key_prefix,
                key_hash=key_hash,
                name=name,
                expires_at=key_expires_at,
                revoked_at=utc_now() if key_revoked else None,
            )
        )
        await session.commit()

    headers = {"Authorization": f"Bearer {raw_key}"}
    return raw_key, headers, user_id, key_id
