from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.domain.models import Conversation
from agentdesk.persistence.guards import tenant_predicate


async def get_conversation(
    session: AsyncSession, conversation_id: str, *, for_update: bool = False
) -> Conversation | None:
    stmt = select(Conversation).where(Conversation.id == conversation_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_open_conversation(
    session: AsyncSession, agent_id: str, session_id: str
) -> Conversation | None:
    # Row lock plus a fresh read so a resolve committed elsewhere is not missed.
    result = await session.execute(
        select(Conversation)
        .where(
            Conversation.agent_id == agent_id,
            Conversation.session_id == session_id,
            Conversation.is_resolved.is_(False),
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def add_conversation(session: AsyncSession, conversation: Conversation) -> Conversation:
    session.add(conversation)
    await session.flush()
    return conversation


async def list_conversations(
    session: AsyncSession,
    agent_id: str,
    *,
    resolved: bool | None = None,
) -> list[Conversation]:
    stmt = select(Conversation).where(Conversation.agent_id == agent_id)
    if resolved is not None:
        stmt = stmt.where(Conversation.is_resolved.is_(resolved))
    # Most recent activity first; id breaks ties for stable pagination.
    stmt = stmt.order_by(Conversation.last_activity_at.desc(), Conversation.id.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_idle_open(
    session: AsyncSession, *, cutoff: datetime, limit: int
) -> list[tuple[str, str, str]]:
    # Return only lock keys; the sweep re-reads each row under its session lock.
    result = await session.execute(
        select(Conversation.id, Conversation.agent_id, Conversation.session_id)
        .where(Conversation.is_resolved.is_(False), Conversation.last_activity_at < cutoff)
        .order_by(Conversation.last_activity_at.asc(), Conversation.id.asc())
        .limit(limit)
    )
    return [(row[0], row[1], row[2]) for row in result.all()]


async def count_by_state(
    session: AsyncSession,
    *,
    tenant_id: str | None,
    agent_id: str | None = None,
) -> dict[bool, int]:
    stmt = select(Conversation.is_resolved, func.count(Conversation.id)).where(
        tenant_predicate(Conversation, tenant_id)
    )
    if agent_id is not None:
        stmt = stmt.where(Conversation.agent_id == agent_id)
    stmt = stmt.group_by(Conversation.is_resolved)
    result = await session.execute(stmt)
    counts = {True: 0, False: 0}
    for is_resolved, count in result.all():
        counts[bool(is_resolved)] = int(count)
    return counts


async def touch_open_conversation(session: AsyncSession, conversation_id: str, at: datetime) -> bool:
    # False when the conversation was resolved by another writer in the meantime.
    result = await session.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id, Conversation.is_resolved.is_(False))
        .values(last_activity_at=at)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def resolve_open_conversation(
    session: AsyncSession,
    conversation_id: str,
    *,
    reason: str,
    resolved_at: datetime,
    idle_before: datetime | None = None,
) -> bool:
    """Move one conversation from open to resolved in a single conditional write.

    With ``idle_before`` the write only applies while the conversation is still
    idle, so activity committed by any process after selection keeps it open.
    """
    stmt = update(Conversation).where(
        Conversation.id == conversation_id, Conversation.is_resolved.is_(False)
    )
    if idle_before is not None:
        stmt = stmt.where(Conversation.last_activity_at < idle_before)
    result = await session.execute(
        stmt.values(is_resolved=True, resolved_at=resolved_at, resolution_reason=reason).execution_options(
            synchronize_session=False
        )
    )
    return result.rowcount == 1
