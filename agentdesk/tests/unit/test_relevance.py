from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from agentdesk.core.errors import RelevanceConfigError
from agentdesk.domain.models import KnowledgeFragment
from agentdesk.providers.relevance.factory import get_relevance_scorer
from agentdesk.providers.relevance.lexical import LexicalOverlapScorer, normalize_token, terms
from agentdesk.services.knowledge import rank_fragments


_BASE = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _fragment(fragment_id: str, content: str, *, agent_id: str = "a1", offset_s: int = 0) -> KnowledgeFragment:
    return KnowledgeFragment(
        id=fragment_id,
        agent_id=agent_id,
        tenant_id="t1",
        source_name=f"{fragment_id}.md",
        content=content,
        metadata_json={},
        uploaded_at=_BASE + timedelta(seconds=offset_s),
    )


def test_plural_folding_and_stop_words() -> None:
    assert normalize_token("refunds") == "refund"
    assert normalize_token("policies") == "policy"
    assert normalize_token("address") == "address"
    assert terms("How long for a refund?") == {"long", "refund"}


def test_refund_question_matches_refund_policy() -> None:
    scorer = LexicalOverlapScorer()
    score = scorer.score("how long for a refund?", "Refunds processed within 5 days")
    assert score == pytest.approx(0.5)
    assert scorer.score("thanks", "Refunds processed within 5 days") == 0.0
    assert scorer.score("the and of", "anything") == 0.0


def test_rank_orders_by_score_then_upload_then_id() -> None:
    fragments = [
        _fragment("f3", "shipping takes three days", offset_s=5),
        _fragment("f2", "refund shipping costs", offset_s=1),
        _fragment("f1", "refund shipping costs", offset_s=1),
        _fragment("f0", "refund and shipping", offset_s=0),
    ]
    ranked = rank_fragments(
        fragments,
        agent_id="a1",
        query_text="refund shipping",
        max_results=10,
        scorer=LexicalOverlapScorer(),
        min_score=0.01,
    )
    assert [item.fragment_id for item in ranked] == ["f0", "f1", "f2", "f3"]
    assert ranked[-1].score == pytest.approx(0.5)


def test_rank_drops_zero_scores_and_foreign_agents() -> None:
    fragments = [
        _fragment("mine", "refund window is 30 days"),
        _fragment("theirs", "refund window is 30 days", agent_id="a2"),
        _fragment("irrelevant", "store hours are 9 to 5"),
    ]
    ranked = rank_fragments(
        fragments,
        agent_id="a1",
        query_text="refund window",
        max_results=5,
        scorer=LexicalOverlapScorer(),
        min_score=0.01,
    )
    assert [item.fragment_id for item in ranked] == ["mine"]


def test_rank_respects_max_results_and_min_score() -> None:
    fragments = [_fragment(f"f{i}", "refund shipping", offset_s=i) for i in range(4)]
    fragments.append(_fragment("half", "refund only", offset_s=10))
    ranked = rank_fragments(
        fragments,
        agent_id="a1",
        query_text="refund shipping",
        max_results=2,
        scorer=LexicalOverlapScorer(),
        min_score=0.01,
    )
    assert [item.fragment_id for item in ranked] == ["f0", "f1"]
    strict = rank_fragments(
        fragments,
        agent_id="a1",
        query_text="refund shipping",
        max_results=10,
        scorer=LexicalOverlapScorer(),
        min_score=0.75,
    )
    assert "half" not in {item.fragment_id for item in strict}


def test_factory_rejects_unknown_scorer() -> None:
    assert get_relevance_scorer("lexical").name == "lexical"
    with pytest.raises(RelevanceConfigError):
        get_relevance_scorer("vector")
