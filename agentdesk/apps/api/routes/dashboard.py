from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.apps.api.deps import get_current_principal, get_db
from agentdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from agentdesk.apps.api.response import SuccessEnvelope, success_response
from agentdesk.apps.api.routes.agents import AgentResponse, to_agent_response
from agentdesk.services.analytics import tenant_overview
from agentdesk.services.tenancy import Principal


router = APIRouter(tags=["dashboard"], responses=DEFAULT_ERROR_RESPONSES)


class DashboardResponse(BaseModel):
    tenant_id: str | None
    agent_count: int
    total_conversations: int
    open_conversations: int
    resolved_conversations: int
    resolution_rate: float
    total_messages: int
    avg_response_time_s: float | None = None
    recent_agents: list[AgentResponse] = Field(default_factory=list)


@router.get("/dashboard", response_model=SuccessEnvelope[DashboardResponse] | DashboardResponse)
async def get_dashboard(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    overview = await tenant_overview(db, principal=principal)
    totals = overview.totals
    data = DashboardResponse(
        tenant_id=overview.tenant_id,
        agent_count=overview.agent_count,
        total_conversations=totals.total_conversations,
        open_conversations=totals.open_conversations,
        resolved_conversations=totals.resolved_conversations,
        resolution_rate=totals.resolution_rate,
        total_messages=totals.total_messages,
        avg_response_time_s=totals.avg_response_time_s,
        recent_agents=[to_agent_response(agent) for agent in overview.recent_agents],
    )
    return success_response(request=request, data=data)
