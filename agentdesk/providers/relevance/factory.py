from __future__ import annotations

from agentdesk.core.config import get_settings
from agentdesk.core.errors import RelevanceConfigError
from agentdesk.providers.relevance.base import RelevanceScorer
from agentdesk.providers.relevance.lexical import LexicalOverlapScorer


def get_relevance_scorer(name: str | None = None) -> RelevanceScorer:
    provider = (name or get_settings().relevance_scorer or "lexical").lower()
    if provider == "lexical":
        return LexicalOverlapScorer()
    raise RelevanceConfigError(f"Unknown relevance scorer: {provider}")
