from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class ScoredFragment:
    fragment_id: str
    agent_id: str
    source_name: str
    content: str
    score: float
    uploaded_at: datetime


class RelevanceScorer(Protocol):
    name: str

    def score(self, query: str, content: str) -> float:
        # Return a relevance score in [0, 1]; identical inputs must give identical scores.
        ...
