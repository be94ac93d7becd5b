"""Knowledge index: per-agent fragments and the relevance query over them."""
from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.core.config import get_settings
from agentdesk.core.errors import InvalidInputError, NotFoundError, UnavailableError
from agentdesk.domain.enums import Role
from agentdesk.domain.models import KnowledgeFragment, utc_now
from agentdesk.persistence.repos import knowledge as knowledge_repo
from agentdesk.providers.relevance.base import RelevanceScorer, ScoredFragment
from agentdesk.providers.relevance.factory import get_relevance_scorer
from agentdesk.services.agents import load_owned_agent
from agentdesk.services.tenancy import Principal, is_allowed, require_role


logger = logging.getLogger(__name__)


async def add_fragment(
    session: AsyncSession,
    *,
    agent_id: str,
    principal: Principal,
    source_name: str,
    content: str,
    metadata: dict[str, Any] | None = None,
) -> KnowledgeFragment:
    require_role(principal, Role.OWNER)
    agent = await load_owned_agent(session, agent_id, principal)

    if not source_name or not source_name.strip():
        raise InvalidInputError("Document name must not be empty", details={"field": "source_name"})
    if content is None or not content.strip():
        raise InvalidInputError("Document content must not be empty", details={"field": "content"})
    size_bytes = len(content.encode("utf-8"))
    max_bytes = get_settings().knowledge_max_document_bytes
    if size_bytes > max_bytes:
        raise InvalidInputError(
            "Document exceeds the maximum size",
            details={"size_bytes": size_bytes, "max_bytes": max_bytes},
        )

    metadata_json = dict(metadata or {})
    metadata_json["size_bytes"] = size_bytes
    fragment = KnowledgeFragment(
        id=uuid4().hex,
        agent_id=agent.id,
        tenant_id=agent.tenant_id,
        source_name=source_name.strip(),
        content=content,
        metadata_json=metadata_json,
        uploaded_at=utc_now(),
    )
    try:
        await knowledge_repo.add_fragment(session, fragment)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise UnavailableError("Database error while storing knowledge") from exc
    logger.info(
        "knowledge_fragment_added fragment_id=%s agent_id=%s size_bytes=%s",
        fragment.id,
        agent.id,
        size_bytes,
    )
    return fragment


async def remove_fragment(session: AsyncSession, *, fragment_id: str, principal: Principal) -> KnowledgeFragment:
    require_role(principal, Role.OWNER)
    try:
        fragment = await knowledge_repo.get_fragment(session, fragment_id)
    except SQLAlchemyError as exc:
        raise UnavailableError("Database error while loading knowledge") from exc
    # Removing twice is NotFound: callers must be able to tell "removed" from "never existed".
    if fragment is None or not is_allowed(principal, fragment.tenant_id):
        raise NotFoundError("Knowledge fragment not found", details={"fragment_id": fragment_id})
    try:
        deleted = await knowledge_repo.delete_fragment(session, fragment_id)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise UnavailableError("Database error while removing knowledge") from exc
    if not deleted:
        raise NotFoundError("Knowledge fragment not found", details={"fragment_id": fragment_id})
    logger.info("knowledge_fragment_removed fragment_id=%s agent_id=%s", fragment_id, fragment.agent_id)
    return fragment


async def list_fragments(
    session: AsyncSession, *, agent_id: str, principal: Principal
) -> list[KnowledgeFragment]:
    require_role(principal, Role.ADMIN)
    agent = await load_owned_agent(session, agent_id, principal)
    try:
        return await knowledge_repo.list_fragments(session, agent.id)
    except SQLAlchemyError as exc:
        raise UnavailableError("Database error while listing knowledge") from exc


def rank_fragments(
    fragments: list[KnowledgeFragment],
    *,
    agent_id: str,
    query_text: str,
    max_results: int,
    scorer: RelevanceScorer,
    min_score: float,
) -> list[ScoredFragment]:
    scored: list[ScoredFragment] = []
    for fragment in fragments:
        # Re-check ownership so a widened query can never leak another agent's knowledge.
        if fragment.agent_id != agent_id:
            continue
        score = float(scorer.score(query_text, fragment.content))
        if score <= 0.0 or score < min_score:
            continue
        scored.append(
            ScoredFragment(
                fragment_id=fragment.id,
                agent_id=fragment.agent_id,
                source_name=fragment.source_name,
                content=fragment.content,
                score=score,
                uploaded_at=fragment.uploaded_at,
            )
        )
    # Score first, then upload order and id so identical inputs always rank identically.
    scored.sort(key=lambda item: (-item.score, item.uploaded_at, item.fragment_id))
    return scored[:max_results]


async def query_relevant(
    session: AsyncSession,
    *,
    agent_id: str,
    principal: Principal,
    query_text: str,
    max_results: int,
    scorer: RelevanceScorer | None = None,
) -> list[ScoredFragment]:
    if max_results < 1:
        raise InvalidInputError("max_results must be at least 1", details={"max_results": max_results})
    agent = await load_owned_agent(session, agent_id, principal)
    try:
        fragments = await knowledge_repo.list_fragments(session, agent.id)
    except SQLAlchemyError as exc:
        raise UnavailableError("Database error while querying knowledge") from exc
    if not fragments:
        return []
    return rank_fragments(
        fragments,
        agent_id=agent.id,
        query_text=query_text or "",
        max_results=max_results,
        scorer=scorer or get_relevance_scorer(),
        min_score=get_settings().relevance_min_score,
    )
