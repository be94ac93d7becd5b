from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.domain.models import Agent, Conversation, KnowledgeFragment, Message
from agentdesk.persistence.guards import tenant_predicate


async def get_agent(session: AsyncSession, agent_id: str) -> Agent | None:
    result = await session.execute(select(Agent).where(Agent.id == agent_id))
    return result.scalar_one_or_none()


async def list_agents(session: AsyncSession, tenant_id: str | None) -> list[Agent]:
    # Newest first with id tie-break so listings are stable across calls.
    result = await session.execute(
        select(Agent)
        .where(tenant_predicate(Agent, tenant_id))
        .order_by(Agent.created_at.desc(), Agent.id.desc())
    )
    return list(result.scalars().all())


async def add_agent(session: AsyncSession, agent: Agent) -> Agent:
    session.add(agent)
    await session.flush()
    return agent


async def delete_agent_cascade(session: AsyncSession, agent_id: str) -> dict[str, int]:
    # Children first so foreign keys hold at every statement; the caller owns the transaction.
    conversation_ids = select(Conversation.id).where(Conversation.agent_id == agent_id)
    messages = await session.execute(
        delete(Message).where(Message.conversation_id.in_(conversation_ids))
    )
    conversations = await session.execute(
        delete(Conversation).where(Conversation.agent_id == agent_id)
    )
    fragments = await session.execute(
        delete(KnowledgeFragment).where(KnowledgeFragment.agent_id == agent_id)
    )
    agents = await session.execute(delete(Agent).where(Agent.id == agent_id))
    return {
        "messages": int(messages.rowcount or 0),
        "conversations": int(conversations.rowcount or 0),
        "fragments": int(fragments.rowcount or 0),
        "agents": int(agents.rowcount or 0),
    }
