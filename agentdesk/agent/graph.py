from __future__ import annotations

import time

from langgraph.graph import END, StateGraph

from agentdesk.domain.models import Agent
from agentdesk.domain.state import ReplyState
from agentdesk.persistence.repos.messages import recent_messages
from agentdesk.providers.composer.base import ReplyComposer
from agentdesk.providers.relevance.base import RelevanceScorer, ScoredFragment
from agentdesk.services.knowledge import query_relevant
from agentdesk.services.tenancy import Principal


def _scored_to_dict(item: ScoredFragment) -> dict:
    return {
        "fragment_id": item.fragment_id,
        "agent_id": item.agent_id,
        "source_name": item.source_name,
        "content": item.content,
        "score": item.score,
        "uploaded_at": item.uploaded_at,
    }


def build_graph(
    *,
    session,
    agent: Agent,
    principal: Principal,
    composer: ReplyComposer,
    scorer: RelevanceScorer | None,
    top_k: int,
    history_window: int,
):
    graph = StateGraph(ReplyState)

    async def load_history(state: ReplyState) -> dict:
        started = time.monotonic()
        history: list[dict] = []
        # Previews have no conversation and therefore no history.
        if state.get("conversation_id") and history_window > 0:
            messages = await recent_messages(session, state["conversation_id"], history_window)
            history = [{"role": msg.role, "content": msg.content} for msg in messages]
        timings = dict(state.get("timings_ms") or {})
        timings["history_load"] = (time.monotonic() - started) * 1000.0
        return {"history": history, "timings_ms": timings}

    async def retrieve(state: ReplyState) -> dict:
        started = time.monotonic()
        scored = await query_relevant(
            session,
            agent_id=state["agent_id"],
            principal=principal,
            query_text=state["customer_message"],
            max_results=top_k,
            scorer=scorer,
        )
        timings = dict(state.get("timings_ms") or {})
        timings["retrieval"] = (time.monotonic() - started) * 1000.0
        return {"retrieved": [_scored_to_dict(item) for item in scored], "timings_ms": timings}

    async def compose(state: ReplyState) -> dict:
        started = time.monotonic()
        fragments = [ScoredFragment(**item) for item in state["retrieved"]]
        composed = composer.compose(
            agent=agent,
            question=state["customer_message"],
            fragments=fragments,
            history=state["history"],
        )
        timings = dict(state.get("timings_ms") or {})
        timings["composition"] = (time.monotonic() - started) * 1000.0
        return {
            "reply": composed.text,
            "confidence": composed.confidence,
            "grounded": composed.grounded,
            "fragment_ids": list(composed.fragment_ids),
            "timings_ms": timings,
        }

    graph.add_node("load_history", load_history)
    graph.add_node("retrieve", retrieve)
    graph.add_node("compose", compose)

    graph.set_entry_point("load_history")
    graph.add_edge("load_history", "retrieve")
    graph.add_edge("retrieve", "compose")
    graph.add_edge("compose", END)

    return graph.compile()


def initial_state(*, agent: Agent, conversation_id: str | None, customer_message: str) -> ReplyState:
    return {
        "agent_id": agent.id,
        "tenant_id": agent.tenant_id,
        "conversation_id": conversation_id,
        "customer_message": customer_message,
        "history": [],
        "retrieved": [],
        "reply": None,
        "confidence": 0.0,
        "grounded": False,
        "fragment_ids": [],
        "timings_ms": {},
    }


async def run_graph(
    *,
    session,
    agent: Agent,
    principal: Principal,
    composer: ReplyComposer,
    state: ReplyState,
    top_k: int,
    history_window: int,
    scorer: RelevanceScorer | None = None,
) -> ReplyState:
    graph = build_graph(
        session=session,
        agent=agent,
        principal=principal,
        composer=composer,
        scorer=scorer,
        top_k=top_k,
        history_window=history_window,
    )
    return await graph.ainvoke(state)
