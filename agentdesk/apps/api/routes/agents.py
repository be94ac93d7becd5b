from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.apps.api.deps import get_current_principal, get_db
from agentdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from agentdesk.apps.api.response import SuccessEnvelope, success_response
from agentdesk.domain.enums import Tone
from agentdesk.domain.models import Agent, as_utc
from agentdesk.services import agents as agents_service
from agentdesk.services.analytics import agent_metrics
from agentdesk.services.audit import record_principal_event
from agentdesk.services.dispatcher import preview_reply
from agentdesk.services.tenancy import Principal


router = APIRouter(prefix="/agents", tags=["agents"], responses=DEFAULT_ERROR_RESPONSES)


class AgentResponse(BaseModel):
    id: str
    tenant_id: str
    name: str
    business_name: str
    description: str | None
    tone: str
    system_prompt: str | None
    is_active: bool
    created_at: str
    updated_at: str


class AgentCreateRequest(BaseModel):
    name: str
    business_name: str
    tone: str = Field(default=Tone.PROFESSIONAL.value)
    description: str | None = None
    system_prompt: str | None = None
    is_active: bool = True

    # Tenant comes from the credential, never from the payload.
    model_config = {"extra": "forbid"}


class AgentPatchRequest(BaseModel):
    name: str | None = None
    business_name: str | None = None
    tone: str | None = None
    description: str | None = None
    system_prompt: str | None = None
    is_active: bool | None = None

    model_config = {"extra": "forbid"}


class PreviewRequest(BaseModel):
    text: str


class PreviewResponse(BaseModel):
    agent_id: str
    reply: str
    confidence: float
    grounded: bool
    fragment_ids: list[str]


class AgentMetricsResponse(BaseModel):
    agent_id: str
    total_conversations: int
    open_conversations: int
    resolved_conversations: int
    resolution_rate: float
    total_messages: int
    avg_response_time_s: float | None = None


def to_agent_response(agent: Agent) -> AgentResponse:
    return AgentResponse(
        id=agent.id,
        tenant_id=agent.tenant_id,
        name=agent.name,
        business_name=agent.business_name,
        description=agent.description,
        tone=agent.tone,
        system_prompt=agent.system_prompt,
        is_active=agent.is_active,
        created_at=as_utc(agent.created_at).isoformat(),
        updated_at=as_utc(agent.updated_at).isoformat(),
    )


# Legacy aliases return the bare payload; /v1 wraps it.
@router.get("", response_model=SuccessEnvelope[list[AgentResponse]] | list[AgentResponse])
async def list_agents(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    agents = await agents_service.list_agents(db, principal=principal)
    return success_response(request=request, data=[to_agent_response(agent) for agent in agents])


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[AgentResponse] | AgentResponse,
)
async def create_agent(
    request: Request,
    payload: AgentCreateRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    agent = await agents_service.create_agent(
        db,
        tenant_id=principal.tenant_id,
        spec=agents_service.AgentSpec(**payload.model_dump()),
        principal=principal,
    )
    await record_principal_event(
        session=db,
        principal=principal,
        event_type="agents.created",
        resource_type="agent",
        resource_id=agent.id,
        tenant_id=agent.tenant_id,
        request=request,
        metadata={"tone": agent.tone},
    )
    return success_response(request=request, data=to_agent_response(agent))


@router.get("/{agent_id}", response_model=SuccessEnvelope[AgentResponse] | AgentResponse)
async def get_agent(
    agent_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    agent = await agents_service.get_agent(db, agent_id=agent_id, principal=principal)
    return success_response(request=request, data=to_agent_response(agent))


@router.patch("/{agent_id}", response_model=SuccessEnvelope[AgentResponse] | AgentResponse)
async def patch_agent(
    agent_id: str,
    request: Request,
    payload: AgentPatchRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    patch = payload.model_dump(exclude_unset=True)
    agent = await agents_service.update_agent(db, agent_id=agent_id, principal=principal, patch=patch)
    await record_principal_event(
        session=db,
        principal=principal,
        event_type="agents.updated",
        resource_type="agent",
        resource_id=agent.id,
        tenant_id=agent.tenant_id,
        request=request,
        metadata={"updated_fields": sorted(patch)},
    )
    return success_response(request=request, data=to_agent_response(agent))


@router.delete("/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_agent(
    agent_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> Response:
    counts = await agents_service.delete_agent(db, agent_id=agent_id, principal=principal)
    await record_principal_event(
        session=db,
        principal=principal,
        event_type="agents.deleted",
        resource_type="agent",
        resource_id=agent_id,
        request=request,
        metadata={"deleted": counts},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{agent_id}/preview", response_model=SuccessEnvelope[PreviewResponse] | PreviewResponse)
async def preview_agent_reply(
    agent_id: str,
    request: Request,
    payload: PreviewRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await preview_reply(db, agent_id=agent_id, principal=principal, text=payload.text)
    data = PreviewResponse(
        agent_id=agent_id,
        reply=result.reply_text,
        confidence=result.confidence,
        grounded=result.grounded,
        fragment_ids=result.fragment_ids,
    )
    return success_response(request=request, data=data)


@router.get(
    "/{agent_id}/metrics",
    response_model=SuccessEnvelope[AgentMetricsResponse] | AgentMetricsResponse,
)
async def get_agent_metrics(
    agent_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    totals = await agent_metrics(db, agent_id=agent_id, principal=principal)
    data = AgentMetricsResponse(
        agent_id=agent_id,
        total_conversations=totals.total_conversations,
        open_conversations=totals.open_conversations,
        resolved_conversations=totals.resolved_conversations,
        resolution_rate=totals.resolution_rate,
        total_messages=totals.total_messages,
        avg_response_time_s=totals.avg_response_time_s,
    )
    return success_response(request=request, data=data)
