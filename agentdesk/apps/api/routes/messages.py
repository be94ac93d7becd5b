from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.apps.api.deps import get_current_principal, get_db
from agentdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from agentdesk.apps.api.response import SuccessEnvelope, success_response
from agentdesk.services.dispatcher import handle_inbound_message
from agentdesk.services.tenancy import Principal
from agentdesk.services.telemetry import increment_counter


router = APIRouter(tags=["messages"], responses=DEFAULT_ERROR_RESPONSES)


class InboundMessageRequest(BaseModel):
    session_id: str
    text: str

    model_config = {"extra": "forbid"}


class InboundMessageResponse(BaseModel):
    conversation_id: str
    session_id: str
    state: str
    reply: str
    confidence: float
    grounded: bool
    fragment_ids: list[str]
    customer_ordinal: int
    reply_ordinal: int


@router.post(
    "/agents/{agent_id}/messages",
    response_model=SuccessEnvelope[InboundMessageResponse] | InboundMessageResponse,
)
async def post_inbound_message(
    agent_id: str,
    request: Request,
    payload: InboundMessageRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Customer text is not audited; the conversation itself is the record.
    result = await handle_inbound_message(
        db,
        agent_id=agent_id,
        session_id=payload.session_id,
        customer_text=payload.text,
        principal=principal,
    )
    increment_counter("inbound_messages")
    if not result.grounded:
        increment_counter("inbound_ungrounded_replies")
    conversation = result.conversation
    data = InboundMessageResponse(
        conversation_id=conversation.id,
        session_id=conversation.session_id,
        state="resolved" if conversation.is_resolved else "open",
        reply=result.reply_text,
        confidence=result.confidence,
        grounded=result.grounded,
        fragment_ids=result.fragment_ids,
        customer_ordinal=result.customer_message.ordinal,
        reply_ordinal=result.agent_message.ordinal,
    )
    return success_response(request=request, data=data)
