from __future__ import annotations

from datetime import datetime, timezone

import pytest

from agentdesk.core.errors import ComposerConfigError
from agentdesk.domain.models import Agent
from agentdesk.providers.composer.factory import get_reply_composer
from agentdesk.providers.composer.template import MAX_FRAGMENT_CHARS, TemplateReplyComposer
from agentdesk.providers.relevance.base import ScoredFragment


def _agent(tone: str = "professional") -> Agent:
    return Agent(id="a1", tenant_id="t1", name="Ava", business_name="Acme", tone=tone)


def _scored(fragment_id: str, content: str, score: float) -> ScoredFragment:
    return ScoredFragment(
        fragment_id=fragment_id,
        agent_id="a1",
        source_name=f"{fragment_id}.md",
        content=content,
        score=score,
        uploaded_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


def test_no_fragments_yields_explicit_not_covered_reply() -> None:
    reply = TemplateReplyComposer().compose(agent=_agent(), question="thanks", fragments=[], history=[])
    assert reply.grounded is False
    assert reply.confidence == 0.0
    assert reply.fragment_ids == []
    assert "don't have information" in reply.text
    assert "Acme knowledge base" in reply.text


@pytest.mark.parametrize("tone", ["professional", "friendly", "technical", "casual"])
def test_not_covered_reply_offers_human_handoff_in_every_tone(tone: str) -> None:
    reply = TemplateReplyComposer().compose(agent=_agent(tone), question="?", fragments=[], history=[])
    assert "knowledge base" in reply.text
    assert any(word in reply.text for word in ("team", "human", "person"))


def test_grounded_reply_cites_sources_and_uses_top_score() -> None:
    fragments = [
        _scored("refunds", "Refunds processed within 5 days", 0.5),
        _scored("returns", "Returns accepted for 30 days", 0.25),
    ]
    reply = TemplateReplyComposer().compose(
        agent=_agent("friendly"), question="refund?", fragments=fragments, history=[]
    )
    assert reply.grounded is True
    assert reply.confidence == pytest.approx(0.5)
    assert reply.fragment_ids == ["refunds", "returns"]
    assert reply.text.startswith("Happy to help!")
    assert "- Refunds processed within 5 days (source: refunds.md)" in reply.text


def test_long_fragments_are_truncated() -> None:
    reply = TemplateReplyComposer().compose(
        agent=_agent(), question="x", fragments=[_scored("long", "word " * 500, 1.0)], history=[]
    )
    cited = [line for line in reply.text.splitlines() if line.startswith("- ")][0]
    assert "..." in cited
    assert len(cited) < MAX_FRAGMENT_CHARS + 40


def test_factory_rejects_unknown_composer() -> None:
    assert get_reply_composer("template").name == "template"
    with pytest.raises(ComposerConfigError):
        get_reply_composer("llm")
