from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.apps.api.deps import get_current_principal, get_db
from agentdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from agentdesk.apps.api.response import SuccessEnvelope, success_response
from agentdesk.domain.models import KnowledgeFragment, as_utc
from agentdesk.services import knowledge as knowledge_service
from agentdesk.services.audit import record_principal_event
from agentdesk.services.tenancy import Principal


router = APIRouter(tags=["knowledge"], responses=DEFAULT_ERROR_RESPONSES)


class FragmentResponse(BaseModel):
    id: str
    agent_id: str
    source_name: str
    content: str
    metadata: dict[str, Any]
    uploaded_at: str


class FragmentCreateRequest(BaseModel):
    source_name: str
    content: str
    metadata: dict[str, Any] | None = None

    model_config = {"extra": "forbid"}


def _to_response(fragment: KnowledgeFragment) -> FragmentResponse:
    return FragmentResponse(
        id=fragment.id,
        agent_id=fragment.agent_id,
        source_name=fragment.source_name,
        content=fragment.content,
        metadata=dict(fragment.metadata_json or {}),
        uploaded_at=as_utc(fragment.uploaded_at).isoformat(),
    )


@router.get(
    "/agents/{agent_id}/knowledge",
    response_model=SuccessEnvelope[list[FragmentResponse]] | list[FragmentResponse],
)
async def list_knowledge(
    agent_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    fragments = await knowledge_service.list_fragments(db, agent_id=agent_id, principal=principal)
    return success_response(request=request, data=[_to_response(fragment) for fragment in fragments])


@router.post(
    "/agents/{agent_id}/knowledge",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[FragmentResponse] | FragmentResponse,
)
async def add_knowledge(
    agent_id: str,
    request: Request,
    payload: FragmentCreateRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    fragment = await knowledge_service.add_fragment(
        db,
        agent_id=agent_id,
        principal=principal,
        source_name=payload.source_name,
        content=payload.content,
        metadata=payload.metadata,
    )
    await record_principal_event(
        session=db,
        principal=principal,
        event_type="knowledge.added",
        resource_type="knowledge_fragment",
        resource_id=fragment.id,
        tenant_id=fragment.tenant_id,
        request=request,
        metadata={"agent_id": agent_id, "source_name": fragment.source_name},
    )
    return success_response(request=request, data=_to_response(fragment))


@router.delete("/knowledge/{fragment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_knowledge(
    fragment_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> Response:
    fragment = await knowledge_service.remove_fragment(db, fragment_id=fragment_id, principal=principal)
    await record_principal_event(
        session=db,
        principal=principal,
        event_type="knowledge.removed",
        resource_type="knowledge_fragment",
        resource_id=fragment_id,
        tenant_id=fragment.tenant_id,
        request=request,
        metadata={"agent_id": fragment.agent_id},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
