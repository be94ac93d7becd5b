from __future__ import annotations

from typing import Any, Optional, TypedDict


class ReplyState(TypedDict):
    agent_id: str
    tenant_id: str
    conversation_id: Optional[str]
    customer_message: str
    history: list[dict[str, Any]]
    retrieved: list[dict[str, Any]]
    reply: Optional[str]
    confidence: float
    grounded: bool
    fragment_ids: list[str]
    timings_ms: dict[str, float]
