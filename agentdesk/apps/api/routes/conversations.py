from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.apps.api.deps import get_current_principal, get_db
from agentdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from agentdesk.apps.api.response import SuccessEnvelope, success_response
from agentdesk.domain.models import Conversation, Message, as_utc
from agentdesk.services import conversations as conversations_service
from agentdesk.services.audit import record_principal_event
from agentdesk.services.tenancy import Principal


router = APIRouter(tags=["conversations"], responses=DEFAULT_ERROR_RESPONSES)


class MessageResponse(BaseModel):
    id: str
    role: str
    content: str
    ordinal: int
    created_at: str


class ConversationResponse(BaseModel):
    id: str
    agent_id: str
    session_id: str
    state: str
    resolution_reason: str | None
    started_at: str
    last_activity_at: str
    resolved_at: str | None
    messages: list[MessageResponse] | None = None


def to_message_response(message: Message) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        role=message.role,
        content=message.content,
        ordinal=message.ordinal,
        created_at=as_utc(message.created_at).isoformat(),
    )


def to_conversation_response(
    conversation: Conversation, messages: list[Message] | None = None
) -> ConversationResponse:
    resolved_at = conversation.resolved_at
    return ConversationResponse(
        id=conversation.id,
        agent_id=conversation.agent_id,
        session_id=conversation.session_id,
        state="resolved" if conversation.is_resolved else "open",
        resolution_reason=conversation.resolution_reason,
        started_at=as_utc(conversation.started_at).isoformat(),
        last_activity_at=as_utc(conversation.last_activity_at).isoformat(),
        resolved_at=as_utc(resolved_at).isoformat() if resolved_at is not None else None,
        messages=[to_message_response(message) for message in messages] if messages is not None else None,
    )


@router.get(
    "/agents/{agent_id}/conversations",
    response_model=SuccessEnvelope[list[ConversationResponse]] | list[ConversationResponse],
)
async def list_conversations(
    agent_id: str,
    request: Request,
    resolved: bool | None = Query(default=None),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    records = await conversations_service.list_conversations(
        db, agent_id=agent_id, principal=principal, resolved=resolved
    )
    data = [to_conversation_response(record.conversation, record.messages) for record in records]
    return success_response(request=request, data=data)


@router.get(
    "/conversations/{conversation_id}",
    response_model=SuccessEnvelope[ConversationResponse] | ConversationResponse,
)
async def get_conversation(
    conversation_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    record = await conversations_service.get_conversation(
        db, conversation_id=conversation_id, principal=principal
    )
    return success_response(
        request=request, data=to_conversation_response(record.conversation, record.messages)
    )


@router.post(
    "/conversations/{conversation_id}/resolve",
    response_model=SuccessEnvelope[ConversationResponse] | ConversationResponse,
)
async def resolve_conversation(
    conversation_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    conversation = await conversations_service.mark_resolved(
        db, conversation_id=conversation_id, principal=principal
    )
    await record_principal_event(
        session=db,
        principal=principal,
        event_type="conversations.resolved",
        resource_type="conversation",
        resource_id=conversation.id,
        tenant_id=conversation.tenant_id,
        request=request,
        metadata={"reason": conversation.resolution_reason},
    )
    return success_response(request=request, data=to_conversation_response(conversation))
