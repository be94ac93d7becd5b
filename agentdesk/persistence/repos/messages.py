from __future__ import annotations

from collections import defaultdict
from uuid import uuid4

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from agentdesk.domain.enums import MessageRole
from agentdesk.domain.models import Conversation, Message, as_utc, utc_now
from agentdesk.persistence.guards import tenant_predicate


async def next_ordinal(session: AsyncSession, conversation_id: str) -> int:
    # Callers hold the session lock, so max + 1 cannot interleave with another append.
    result = await session.execute(
        select(func.max(Message.ordinal)).where(Message.conversation_id == conversation_id)
    )
    current = result.scalar_one_or_none()
    return 0 if current is None else int(current) + 1


async def add_message(
    session: AsyncSession,
    *,
    conversation_id: str,
    role: str,
    content: str,
    ordinal: int,
) -> Message:
    message = Message(
        id=uuid4().hex,
        conversation_id=conversation_id,
        role=role,
        content=content,
        ordinal=ordinal,
        created_at=utc_now(),
    )
    session.add(message)
    await session.flush()
    return message


async def list_messages(session: AsyncSession, conversation_id: str) -> list[Message]:
    result = await session.execute(
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.ordinal.asc())
    )
    return list(result.scalars().all())


async def list_messages_for(
    session: AsyncSession, conversation_ids: list[str]
) -> dict[str, list[Message]]:
    # Batch-load transcripts for listings to avoid one query per conversation.
    grouped: dict[str, list[Message]] = defaultdict(list)
    if not conversation_ids:
        return grouped
    result = await session.execute(
        select(Message)
        .where(Message.conversation_id.in_(conversation_ids))
        .order_by(Message.conversation_id, Message.ordinal.asc())
    )
    for message in result.scalars().all():
        grouped[message.conversation_id].append(message)
    return grouped


async def recent_messages(session: AsyncSession, conversation_id: str, limit: int) -> list[Message]:
    if limit <= 0:
        return []
    result = await session.execute(
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.ordinal.desc())
        .limit(limit)
    )
    return list(reversed(result.scalars().all()))


async def count_messages(
    session: AsyncSession, *, tenant_id: str | None, agent_id: str | None = None
) -> int:
    stmt = (
        select(func.count(Message.id))
        .join(Conversation, Conversation.id == Message.conversation_id)
        .where(tenant_predicate(Conversation, tenant_id))
    )
    if agent_id is not None:
        stmt = stmt.where(Conversation.agent_id == agent_id)
    result = await session.execute(stmt)
    return int(result.scalar_one() or 0)


async def response_intervals(
    session: AsyncSession, *, tenant_id: str | None, agent_id: str | None = None
) -> list[float]:
    """Seconds between each customer message and the agent reply that directly follows it."""
    customer = aliased(Message)
    reply = aliased(Message)
    stmt = (
        select(customer.created_at, reply.created_at)
        .join(
            reply,
            and_(
                reply.conversation_id == customer.conversation_id,
                reply.ordinal == customer.ordinal + 1,
                reply.role == MessageRole.AGENT.value,
            ),
        )
        .join(Conversation, Conversation.id == customer.conversation_id)
        .where(customer.role == MessageRole.CUSTOMER.value, tenant_predicate(Conversation, tenant_id))
    )
    if agent_id is not None:
        stmt = stmt.where(Conversation.agent_id == agent_id)
    result = await session.execute(stmt)
    return [(as_utc(replied) - as_utc(asked)).total_seconds() for asked, replied in result.all()]
