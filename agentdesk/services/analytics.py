from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.core.errors import UnavailableError
from agentdesk.domain.enums import Role
from agentdesk.domain.models import Agent
from agentdesk.persistence.repos import agents as agents_repo
from agentdesk.persistence.repos import conversations as conversations_repo
from agentdesk.persistence.repos import messages as messages_repo
from agentdesk.services.agents import load_owned_agent
from agentdesk.services.tenancy import Principal, require_role, scope_tenant


@dataclass(frozen=True)
class ConversationTotals:
    total_conversations: int
    open_conversations: int
    resolved_conversations: int
    resolution_rate: float
    total_messages: int
    avg_response_time_s: float | None = None


@dataclass(frozen=True)
class TenantOverview:
    tenant_id: str | None
    agent_count: int
    totals: ConversationTotals
    recent_agents: list[Agent] = field(default_factory=list)


_RECENT_AGENTS = 5


def resolution_rate(resolved: int, total: int) -> float:
    # Percentage with one decimal; an agent with no conversations reports 0.0.
    if total <= 0:
        return 0.0
    return round(resolved / total * 100.0, 1)


def average_response_time(intervals: list[float]) -> float | None:
    # Seconds with two decimals; None until an agent has replied at least once.
    if not intervals:
        return None
    return round(sum(intervals) / len(intervals), 2)


async def _totals(
    session: AsyncSession, *, tenant_id: str | None, agent_id: str | None = None
) -> ConversationTotals:
    counts = await conversations_repo.count_by_state(session, tenant_id=tenant_id, agent_id=agent_id)
    total_messages = await messages_repo.count_messages(session, tenant_id=tenant_id, agent_id=agent_id)
    intervals = await messages_repo.response_intervals(session, tenant_id=tenant_id, agent_id=agent_id)
    resolved = counts[True]
    total = counts[True] + counts[False]
    return ConversationTotals(
        total_conversations=total,
        open_conversations=counts[False],
        resolved_conversations=resolved,
        resolution_rate=resolution_rate(resolved, total),
        total_messages=total_messages,
        avg_response_time_s=average_response_time(intervals),
    )


async def agent_metrics(
    session: AsyncSession, *, agent_id: str, principal: Principal
) -> ConversationTotals:
    require_role(principal, Role.ADMIN)
    agent = await load_owned_agent(session, agent_id, principal)
    try:
        return await _totals(session, tenant_id=agent.tenant_id, agent_id=agent.id)
    except SQLAlchemyError as exc:
        raise UnavailableError("Database error while computing agent metrics") from exc


async def tenant_overview(session: AsyncSession, *, principal: Principal) -> TenantOverview:
    require_role(principal, Role.ADMIN)
    tenant_id = scope_tenant(principal)
    try:
        agents = await agents_repo.list_agents(session, tenant_id)
        totals = await _totals(session, tenant_id=tenant_id)
    except SQLAlchemyError as exc:
        raise UnavailableError("Database error while computing tenant overview") from exc
    return TenantOverview(
        tenant_id=tenant_id,
        agent_count=len(agents),
        totals=totals,
        recent_agents=agents[:_RECENT_AGENTS],
    )
