"""Response dispatcher: the inbound-message pipeline.

Steps run in a fixed order: validate the agent, persist the customer message,
retrieve knowledge, compose a reply, persist the reply, apply the resolution
policy. Once the customer message is committed it stays committed even when a
later step fails; errors from retrieval or composition propagate unchanged.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.agent.graph import initial_state, run_graph
from agentdesk.core.config import get_settings
from agentdesk.core.errors import InvalidInputError, NotFoundError, UnavailableError
from agentdesk.domain.enums import Role
from agentdesk.domain.models import Agent, Conversation, Message
from agentdesk.providers.composer.base import ComposedReply, ReplyComposer
from agentdesk.providers.composer.factory import get_reply_composer
from agentdesk.providers.relevance.base import RelevanceScorer
from agentdesk.services.agents import load_owned_agent
from agentdesk.services.conversations import append_agent_message, append_customer_message, auto_resolve
from agentdesk.services.session_locks import SessionLockTable
from agentdesk.services.tenancy import Principal, require_role


logger = logging.getLogger(__name__)


class ResolutionPolicy(Protocol):
    def should_resolve(self, reply: ComposedReply) -> bool:
        ...


@dataclass(frozen=True)
class ConfidenceResolutionPolicy:
    enabled: bool = False
    min_confidence: float = 0.9

    def should_resolve(self, reply: ComposedReply) -> bool:
        return self.enabled and reply.grounded and reply.confidence >= self.min_confidence


def default_resolution_policy() -> ConfidenceResolutionPolicy:
    settings = get_settings()
    return ConfidenceResolutionPolicy(
        enabled=settings.auto_resolve_enabled,
        min_confidence=settings.auto_resolve_min_confidence,
    )


@dataclass
class DispatchResult:
    conversation: Conversation
    reply_text: str
    customer_message: Message
    agent_message: Message
    confidence: float
    grounded: bool
    fragment_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PreviewResult:
    reply_text: str
    confidence: float
    grounded: bool
    fragment_ids: list[str] = field(default_factory=list)


async def _load_active_agent(session: AsyncSession, agent_id: str, principal: Principal) -> Agent:
    agent = await load_owned_agent(session, agent_id, principal)
    # Inactive agents do not take traffic; report them like missing ones.
    if not agent.is_active:
        raise NotFoundError("Agent not found", details={"agent_id": agent_id})
    return agent


def _composed(state: dict) -> ComposedReply:
    return ComposedReply(
        text=state["reply"] or "",
        confidence=float(state.get("confidence") or 0.0),
        grounded=bool(state.get("grounded")),
        fragment_ids=list(state.get("fragment_ids") or []),
    )


async def handle_inbound_message(
    session: AsyncSession,
    *,
    agent_id: str,
    session_id: str,
    customer_text: str,
    principal: Principal,
    composer: ReplyComposer | None = None,
    scorer: RelevanceScorer | None = None,
    policy: ResolutionPolicy | None = None,
    locks: SessionLockTable | None = None,
) -> DispatchResult:
    require_role(principal, Role.SERVICE)
    settings = get_settings()
    agent = await _load_active_agent(session, agent_id, principal)
    composer = composer or get_reply_composer()
    policy = policy or default_resolution_policy()

    conversation, customer_message = await append_customer_message(
        session,
        agent_id=agent.id,
        session_id=session_id,
        content=customer_text,
        principal=principal,
        locks=locks,
    )
    # The lock is released here; retrieval and composition run unlocked.
    state = await run_graph(
        session=session,
        agent=agent,
        principal=principal,
        composer=composer,
        scorer=scorer,
        state=initial_state(
            agent=agent, conversation_id=conversation.id, customer_message=customer_text
        ),
        top_k=settings.dispatcher_top_k,
        history_window=settings.dispatcher_history_window,
    )
    reply = _composed(state)

    agent_message = await append_agent_message(
        session,
        conversation_id=conversation.id,
        content=reply.text,
        principal=principal,
        locks=locks,
    )
    if policy.should_resolve(reply):
        conversation = await auto_resolve(
            session, conversation_id=conversation.id, principal=principal, locks=locks
        )
    else:
        try:
            await session.refresh(conversation)
        except SQLAlchemyError as exc:
            raise UnavailableError("Database error while reloading conversation") from exc

    logger.info(
        "inbound_dispatched conversation_id=%s agent_id=%s fragments=%s confidence=%.2f resolved=%s",
        conversation.id,
        agent.id,
        len(reply.fragment_ids),
        reply.confidence,
        conversation.is_resolved,
    )
    return DispatchResult(
        conversation=conversation,
        reply_text=reply.text,
        customer_message=customer_message,
        agent_message=agent_message,
        confidence=reply.confidence,
        grounded=reply.grounded,
        fragment_ids=reply.fragment_ids,
    )


async def preview_reply(
    session: AsyncSession,
    *,
    agent_id: str,
    principal: Principal,
    text: str,
    composer: ReplyComposer | None = None,
    scorer: RelevanceScorer | None = None,
) -> PreviewResult:
    # Dry run of retrieval and composition; nothing is persisted.
    require_role(principal, Role.OWNER)
    if text is None or not text.strip():
        raise InvalidInputError("Message content must not be empty", details={"field": "text"})
    settings = get_settings()
    agent = await _load_active_agent(session, agent_id, principal)
    state = await run_graph(
        session=session,
        agent=agent,
        principal=principal,
        composer=composer or get_reply_composer(),
        scorer=scorer,
        state=initial_state(agent=agent, conversation_id=None, customer_message=text),
        top_k=settings.dispatcher_top_k,
        history_window=0,
    )
    reply = _composed(state)
    return PreviewResult(
        reply_text=reply.text,
        confidence=reply.confidence,
        grounded=reply.grounded,
        fragment_ids=reply.fragment_ids,
    )
