from __future__ import annotations

import pytest

from agentdesk.core.errors import ForbiddenError, InvalidInputError, NotFoundError
from agentdesk.persistence.db import SessionLocal
from agentdesk.services import knowledge as knowledge_service
from agentdesk.tests.utils.auth import make_principal
from agentdesk.tests.utils.factories import add_knowledge, create_agent


async def test_add_fragment_records_size_and_tenant() -> None:
    agent = await create_agent("t1")
    fragment = await add_knowledge(agent, "refunds.md", "Refunds processed within 5 days")
    assert fragment.tenant_id == "t1"
    assert fragment.agent_id == agent.id
    assert fragment.metadata_json["size_bytes"] == len("Refunds processed within 5 days")


async def test_add_fragment_rejects_empty_and_oversized(settings_override) -> None:
    agent = await create_agent("t1")
    owner = make_principal("t1", "owner")
    settings_override(knowledge_max_document_bytes=10)
    async with SessionLocal() as session:
        with pytest.raises(InvalidInputError):
            await knowledge_service.add_fragment(
                session, agent_id=agent.id, principal=owner, source_name="a.md", content="   "
            )
        with pytest.raises(InvalidInputError):
            await knowledge_service.add_fragment(
                session, agent_id=agent.id, principal=owner, source_name="", content="refund"
            )
        with pytest.raises(InvalidInputError) as excinfo:
            await knowledge_service.add_fragment(
                session, agent_id=agent.id, principal=owner, source_name="a.md", content="x" * 11
            )
    assert excinfo.value.details["max_bytes"] == 10


async def test_add_fragment_requires_owner_and_tenant() -> None:
    agent = await create_agent("t1")
    async with SessionLocal() as session:
        with pytest.raises(ForbiddenError):
            await knowledge_service.add_fragment(
                session,
                agent_id=agent.id,
                principal=make_principal("t1", "admin"),
                source_name="a.md",
                content="text",
            )
        with pytest.raises(NotFoundError):
            await knowledge_service.add_fragment(
                session,
                agent_id=agent.id,
                principal=make_principal("t2", "owner"),
                source_name="a.md",
                content="text",
            )


async def test_remove_fragment_twice_is_not_found() -> None:
    agent = await create_agent("t1")
    fragment = await add_knowledge(agent, "refunds.md", "Refunds processed within 5 days")
    owner = make_principal("t1", "owner")
    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await knowledge_service.remove_fragment(
                session, fragment_id=fragment.id, principal=make_principal("t2", "owner")
            )
        removed = await knowledge_service.remove_fragment(session, fragment_id=fragment.id, principal=owner)
        assert removed.id == fragment.id
    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await knowledge_service.remove_fragment(session, fragment_id=fragment.id, principal=owner)
        assert await knowledge_service.list_fragments(session, agent_id=agent.id, principal=owner) == []


async def test_query_only_sees_own_agent_knowledge() -> None:
    mine = await create_agent("t1", name="Mine")
    other = await create_agent("t1", name="Other")
    foreign = await create_agent("t2", name="Foreign")
    await add_knowledge(mine, "refunds.md", "Refunds processed within 5 days")
    await add_knowledge(other, "refunds.md", "Refund requests go to billing")
    await add_knowledge(foreign, "refunds.md", "Refunds take two weeks")

    async with SessionLocal() as session:
        results = await knowledge_service.query_relevant(
            session,
            agent_id=mine.id,
            principal=make_principal("t1", "service"),
            query_text="how long for a refund?",
            max_results=5,
        )
    assert len(results) == 1
    assert results[0].agent_id == mine.id
    assert results[0].content == "Refunds processed within 5 days"


async def test_query_validates_max_results_and_tenant() -> None:
    agent = await create_agent("t1")
    async with SessionLocal() as session:
        with pytest.raises(InvalidInputError):
            await knowledge_service.query_relevant(
                session, agent_id=agent.id, principal=make_principal("t1", "service"), query_text="x", max_results=0
            )
        with pytest.raises(NotFoundError):
            await knowledge_service.query_relevant(
                session, agent_id=agent.id, principal=make_principal("t2", "service"), query_text="x", max_results=1
            )
        assert await knowledge_service.query_relevant(
            session, agent_id=agent.id, principal=make_principal("t1", "service"), query_text="x", max_results=1
        ) == []
