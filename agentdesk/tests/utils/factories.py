from __future__ import annotations

from agentdesk.domain.models import Agent, KnowledgeFragment
from agentdesk.persistence.db import SessionLocal
from agentdesk.services import agents as agents_service
from agentdesk.services import knowledge as knowledge_service
from agentdesk.tests.utils.auth import make_principal


async def create_agent(
    tenant_id: str,
    *,
    name: str = "Ava",
    business_name: str = "Acme",
    tone: str = "professional",
    is_active: bool = True,
) -> Agent:
    async with SessionLocal() as session:
        return await agents_service.create_agent(
            session,
            tenant_id=tenant_id,
            spec=agents_service.AgentSpec(
                name=name, business_name=business_name, tone=tone, is_active=is_active
            ),
            principal=make_principal(tenant_id, "owner"),
        )


async def add_knowledge(agent: Agent, source_name: str, content: str) -> KnowledgeFragment:
    async with SessionLocal() as session:
        return await knowledge_service.add_fragment(
            session,
            agent_id=agent.id,
            principal=make_principal(agent.tenant_id, "owner"),
            source_name=source_name,
            content=content,
        )
