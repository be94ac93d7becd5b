from __future__ import annotations

import hashlib
import secrets
from uuid import uuid4

from agentdesk.domain.enums import Role


# Dashboard roles are ordered; the service role sits outside the ladder.
ROLE_ORDER: dict[Role, int] = {
    Role.ADMIN: 1,
    Role.OWNER: 2,
    Role.SUPER_ADMIN: 3,
}


def normalize_role(role: str | Role) -> Role:
    # Enforce the closed role vocabulary at the credential boundary.
    if isinstance(role, Role):
        return role
    normalized = role.strip().lower()
    try:
        return Role(normalized)
    except ValueError as exc:
        raise ValueError(f"Unsupported role: {role}") from exc


def role_allows(*, role: Role, minimum_role: Role) -> bool:
    # Compare dashboard roles by rank; service credentials never satisfy a rank check.
    if Role.SERVICE in (role, minimum_role):
        return role == minimum_role
    return ROLE_ORDER.get(role, 0) >= ROLE_ORDER.get(minimum_role, 0)


def hash_api_key(raw_key: str) -> str:
    # Use SHA-256 for deterministic, non-reversible key storage.
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key(*, key_id: str | None = None) -> tuple[str, str, str, str]:
    # Embed the key id in the token so operators can trace secrets safely.
    resolved_id = key_id or uuid4().hex
    secret = secrets.token_urlsafe(32)
    raw_key = f"adk_{resolved_id}_{secret}"
    key_prefix = raw_key[:12]
    return resolved_id, raw_key, key_prefix, hash_api_key(raw_key)
