from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from agentdesk.domain.models import Agent
from agentdesk.providers.relevance.base import ScoredFragment


@dataclass(frozen=True)
class ComposedReply:
    text: str
    # Confidence in [0, 1] consumed by the resolution policy.
    confidence: float
    grounded: bool
    fragment_ids: list[str] = field(default_factory=list)


class ReplyComposer(Protocol):
    name: str

    def compose(
        self,
        *,
        agent: Agent,
        question: str,
        fragments: list[ScoredFragment],
        history: list[dict[str, Any]],
    ) -> ComposedReply:
        ...
