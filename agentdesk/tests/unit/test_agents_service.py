from __future__ import annotations

import pytest
from sqlalchemy import Delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from agentdesk.core.errors import ForbiddenError, InvalidInputError, NotFoundError, UnavailableError
from agentdesk.domain.models import Agent, Conversation, KnowledgeFragment, Message
from agentdesk.persistence.db import SessionLocal
from agentdesk.services import agents as agents_service
from agentdesk.services.conversations import append_customer_message
from agentdesk.tests.utils.auth import make_principal
from agentdesk.tests.utils.factories import add_knowledge, create_agent


async def test_create_agent_defaults_prompt_and_tone() -> None:
    agent = await create_agent("t1", name="Ava", business_name="Acme", tone="Friendly")
    assert agent.tone == "friendly"
    assert agent.is_active is True
    assert "Ava" in agent.system_prompt
    assert "Acme" in agent.system_prompt


async def test_create_agent_validates_input() -> None:
    owner = make_principal("t1", "owner")
    async with SessionLocal() as session:
        with pytest.raises(InvalidInputError):
            await agents_service.create_agent(
                session,
                tenant_id="t1",
                spec=agents_service.AgentSpec(name="Ava", business_name="Acme", tone="sarcastic"),
                principal=owner,
            )
        with pytest.raises(InvalidInputError):
            await agents_service.create_agent(
                session,
                tenant_id="t1",
                spec=agents_service.AgentSpec(name="  ", business_name="Acme"),
                principal=owner,
            )


async def test_create_agent_requires_owner_of_target_tenant() -> None:
    spec = agents_service.AgentSpec(name="Ava", business_name="Acme")
    async with SessionLocal() as session:
        with pytest.raises(ForbiddenError):
            await agents_service.create_agent(
                session, tenant_id="t1", spec=spec, principal=make_principal("t1", "admin")
            )
        with pytest.raises(ForbiddenError):
            await agents_service.create_agent(
                session, tenant_id="t2", spec=spec, principal=make_principal("t1", "owner")
            )
        agent = await agents_service.create_agent(
            session, tenant_id="t2", spec=spec, principal=make_principal("ops", "super_admin")
        )
    assert agent.tenant_id == "t2"


async def test_cross_tenant_get_is_not_found() -> None:
    agent = await create_agent("t1")
    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await agents_service.get_agent(session, agent_id=agent.id, principal=make_principal("t2", "owner"))
        with pytest.raises(NotFoundError):
            await agents_service.get_agent(session, agent_id="missing", principal=make_principal("t1", "owner"))
        loaded = await agents_service.get_agent(session, agent_id=agent.id, principal=make_principal("t1", "admin"))
    assert loaded.id == agent.id


async def test_list_agents_is_tenant_scoped() -> None:
    first = await create_agent("t1", name="One")
    second = await create_agent("t1", name="Two")
    await create_agent("t2", name="Other")
    async with SessionLocal() as session:
        listed = await agents_service.list_agents(session, principal=make_principal("t1", "admin"))
        everything = await agents_service.list_agents(session, principal=make_principal("ops", "super_admin"))
    assert [agent.id for agent in listed] == [second.id, first.id]
    assert len(everything) == 3


async def test_update_agent_applies_patch() -> None:
    agent = await create_agent("t1")
    async with SessionLocal() as session:
        updated = await agents_service.update_agent(
            session,
            agent_id=agent.id,
            principal=make_principal("t1", "owner"),
            patch={"tone": "casual", "is_active": False, "description": "Billing desk"},
        )
        assert updated.tone == "casual"
        assert updated.is_active is False
        assert updated.description == "Billing desk"
        with pytest.raises(InvalidInputError):
            await agents_service.update_agent(
                session, agent_id=agent.id, principal=make_principal("t1", "owner"), patch={"tenant_id": "t2"}
            )
        with pytest.raises(ForbiddenError):
            await agents_service.update_agent(
                session, agent_id=agent.id, principal=make_principal("t1", "admin"), patch={"name": "X"}
            )


async def test_delete_agent_cascades_everything() -> None:
    agent = await create_agent("t1")
    await add_knowledge(agent, "refunds.md", "Refunds processed within 5 days")
    async with SessionLocal() as session:
        await append_customer_message(
            session,
            agent_id=agent.id,
            session_id="s1",
            content="hello",
            principal=make_principal("t1", "service"),
        )

    async with SessionLocal() as session:
        counts = await agents_service.delete_agent(
            session, agent_id=agent.id, principal=make_principal("t1", "owner")
        )
    assert counts == {"messages": 1, "conversations": 1, "fragments": 1, "agents": 1}

    async with SessionLocal() as session:
        for model in (Agent, KnowledgeFragment, Conversation, Message):
            remaining = (await session.execute(select(func.count()).select_from(model))).scalar_one()
            assert remaining == 0, model.__tablename__
        with pytest.raises(NotFoundError):
            await agents_service.delete_agent(session, agent_id=agent.id, principal=make_principal("t1", "owner"))


async def test_failed_cascade_leaves_every_row_in_place(monkeypatch: pytest.MonkeyPatch) -> None:
    agent = await create_agent("t1")
    await add_knowledge(agent, "refunds.md", "Refunds processed within 5 days")
    await add_knowledge(agent, "shipping.md", "Orders ship in 2 days")
    for session_id in ("s1", "s2"):
        async with SessionLocal() as session:
            await append_customer_message(
                session,
                agent_id=agent.id,
                session_id=session_id,
                content="hello",
                principal=make_principal("t1", "service"),
            )

    async with SessionLocal() as session:
        original_execute = session.execute

        async def failing_execute(statement, *args, **kwargs):
            # Messages and conversations are already deleted when this statement runs.
            if isinstance(statement, Delete) and statement.table.name == KnowledgeFragment.__tablename__:
                raise SQLAlchemyError("fragment delete failed")
            return await original_execute(statement, *args, **kwargs)

        monkeypatch.setattr(session, "execute", failing_execute)
        with pytest.raises(UnavailableError):
            await agents_service.delete_agent(
                session, agent_id=agent.id, principal=make_principal("t1", "owner")
            )

    expected = {Agent: 1, KnowledgeFragment: 2, Conversation: 2, Message: 2}
    async with SessionLocal() as session:
        for model, count in expected.items():
            remaining = (await session.execute(select(func.count()).select_from(model))).scalar_one()
            assert remaining == count, model.__tablename__
