from __future__ import annotations

import re


_TOKEN_RE = re.compile(r"[A-Za-z0-9_]+")

# Function words carry no topical signal and would match every fragment.
STOP_WORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "been", "but", "by", "can", "could",
        "did", "do", "does", "for", "from", "had", "has", "have", "how", "i", "if", "in",
        "is", "it", "its", "me", "my", "of", "on", "or", "our", "please", "should", "so",
        "that", "the", "their", "there", "this", "to", "us", "was", "we", "were", "what",
        "when", "where", "which", "who", "why", "will", "with", "would", "you", "your",
    }
)


def normalize_token(token: str) -> str:
    # Light plural folding so "refunds" matches "refund"; no full stemming.
    if len(token) > 4 and token.endswith("ies"):
        return token[:-3] + "y"
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def terms(text: str) -> set[str]:
    tokens = _TOKEN_RE.findall(text.lower())
    return {normalize_token(token) for token in tokens if token not in STOP_WORDS}


class LexicalOverlapScorer:
    """Score a fragment by the share of distinct query terms it contains."""

    name = "lexical"

    def score(self, query: str, content: str) -> float:
        query_terms = terms(query)
        if not query_terms:
            return 0.0
        matched = query_terms & terms(content)
        return len(matched) / len(query_terms)
