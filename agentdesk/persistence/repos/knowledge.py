from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.domain.models import KnowledgeFragment


async def get_fragment(session: AsyncSession, fragment_id: str) -> KnowledgeFragment | None:
    result = await session.execute(
        select(KnowledgeFragment).where(KnowledgeFragment.id == fragment_id)
    )
    return result.scalar_one_or_none()


async def list_fragments(session: AsyncSession, agent_id: str) -> list[KnowledgeFragment]:
    # Upload order with id tie-break keeps ranking ties deterministic downstream.
    result = await session.execute(
        select(KnowledgeFragment)
        .where(KnowledgeFragment.agent_id == agent_id)
        .order_by(KnowledgeFragment.uploaded_at.asc(), KnowledgeFragment.id.asc())
    )
    return list(result.scalars().all())


async def add_fragment(session: AsyncSession, fragment: KnowledgeFragment) -> KnowledgeFragment:
    session.add(fragment)
    await session.flush()
    return fragment


async def delete_fragment(session: AsyncSession, fragment_id: str) -> bool:
    result = await session.execute(
        delete(KnowledgeFragment).where(KnowledgeFragment.id == fragment_id)
    )
    return bool(result.rowcount)
