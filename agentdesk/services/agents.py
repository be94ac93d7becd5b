"""Agent registry: tenant-scoped agent configuration."""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.core.errors import ForbiddenError, InvalidInputError, NotFoundError, UnavailableError
from agentdesk.domain.enums import Role, Tone
from agentdesk.domain.models import Agent, utc_now
from agentdesk.persistence.repos import agents as agents_repo
from agentdesk.services.tenancy import Principal, is_allowed, require_role, scope_tenant


logger = logging.getLogger(__name__)

MUTABLE_FIELDS = frozenset(
    {"name", "business_name", "description", "tone", "system_prompt", "is_active"}
)


@dataclass(frozen=True)
class AgentSpec:
    name: str
    business_name: str
    tone: str = Tone.PROFESSIONAL.value
    description: str | None = None
    system_prompt: str | None = None
    is_active: bool = True


def parse_tone(value: str | Tone) -> Tone:
    if isinstance(value, Tone):
        return value
    try:
        return Tone(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(tone.value for tone in Tone)
        raise InvalidInputError(
            f"Unsupported tone: {value}", details={"field": "tone", "allowed": allowed}
        ) from exc


def _require_text(field: str, value: str | None) -> str:
    if value is None or not str(value).strip():
        raise InvalidInputError(f"{field} must not be empty", details={"field": field})
    return str(value).strip()


def build_system_prompt(
    *, name: str, business_name: str, tone: Tone, description: str | None = None
) -> str:
    # Deterministic default persona used when the owner does not supply one.
    prompt = (
        f"You are {name}, an AI assistant for {business_name}. "
        f"Your communication style is {tone.value}. "
        "Answer customer questions using only the provided knowledge base. "
        "If the knowledge base does not cover a question, say so and offer a human follow-up."
    )
    if description:
        prompt += f" Your role: {description.strip()}"
    return prompt


async def load_owned_agent(session: AsyncSession, agent_id: str, principal: Principal) -> Agent:
    # Cross-tenant agents are reported exactly like missing ones.
    try:
        agent = await agents_repo.get_agent(session, agent_id)
    except SQLAlchemyError as exc:
        raise UnavailableError("Database error while loading agent") from exc
    if agent is None or not is_allowed(principal, agent.tenant_id):
        raise NotFoundError("Agent not found", details={"agent_id": agent_id})
    return agent


async def create_agent(
    session: AsyncSession, *, tenant_id: str, spec: AgentSpec, principal: Principal
) -> Agent:
    require_role(principal, Role.OWNER)
    if not is_allowed(principal, tenant_id):
        raise ForbiddenError("Cannot create agents for another tenant")
    name = _require_text("name", spec.name)
    business_name = _require_text("business_name", spec.business_name)
    tone = parse_tone(spec.tone)
    description = spec.description.strip() if spec.description else None
    system_prompt = spec.system_prompt.strip() if spec.system_prompt else None
    if not system_prompt:
        system_prompt = build_system_prompt(
            name=name, business_name=business_name, tone=tone, description=description
        )

    now = utc_now()
    agent = Agent(
        id=uuid4().hex,
        tenant_id=tenant_id,
        name=name,
        business_name=business_name,
        description=description,
        tone=tone.value,
        system_prompt=system_prompt,
        is_active=bool(spec.is_active),
        created_at=now,
        updated_at=now,
    )
    try:
        await agents_repo.add_agent(session, agent)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise UnavailableError("Database error while creating agent") from exc
    logger.info("agent_created agent_id=%s tenant_id=%s", agent.id, tenant_id)
    return agent


async def get_agent(session: AsyncSession, *, agent_id: str, principal: Principal) -> Agent:
    require_role(principal, Role.ADMIN)
    return await load_owned_agent(session, agent_id, principal)


async def list_agents(session: AsyncSession, *, principal: Principal) -> list[Agent]:
    require_role(principal, Role.ADMIN)
    try:
        return await agents_repo.list_agents(session, scope_tenant(principal))
    except SQLAlchemyError as exc:
        raise UnavailableError("Database error while listing agents") from exc


async def update_agent(
    session: AsyncSession,
    *,
    agent_id: str,
    principal: Principal,
    patch: dict[str, Any],
) -> Agent:
    require_role(principal, Role.OWNER)
    unknown = sorted(set(patch) - MUTABLE_FIELDS)
    if unknown:
        raise InvalidInputError("Fields are not mutable", details={"fields": unknown})
    agent = await load_owned_agent(session, agent_id, principal)

    if "name" in patch:
        agent.name = _require_text("name", patch["name"])
    if "business_name" in patch:
        agent.business_name = _require_text("business_name", patch["business_name"])
    if "tone" in patch:
        agent.tone = parse_tone(patch["tone"]).value
    if "description" in patch:
        description = patch["description"]
        agent.description = description.strip() if description else None
    if "system_prompt" in patch:
        system_prompt = patch["system_prompt"]
        agent.system_prompt = system_prompt.strip() if system_prompt else None
    if "is_active" in patch:
        if not isinstance(patch["is_active"], bool):
            raise InvalidInputError("is_active must be a boolean", details={"field": "is_active"})
        agent.is_active = patch["is_active"]
    agent.updated_at = utc_now()

    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise UnavailableError("Database error while updating agent") from exc
    logger.info("agent_updated agent_id=%s fields=%s", agent.id, ",".join(sorted(patch)))
    return agent


async def delete_agent(session: AsyncSession, *, agent_id: str, principal: Principal) -> dict[str, int]:
    require_role(principal, Role.OWNER)
    agent = await load_owned_agent(session, agent_id, principal)
    # One transaction: readers see the agent with every dependent row, or none of them.
    try:
        counts = await agents_repo.delete_agent_cascade(session, agent.id)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise UnavailableError("Database error while deleting agent") from exc
    logger.info(
        "agent_deleted agent_id=%s fragments=%s conversations=%s messages=%s",
        agent_id,
        counts["fragments"],
        counts["conversations"],
        counts["messages"],
    )
    return counts
