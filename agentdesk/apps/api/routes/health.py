from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from agentdesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from agentdesk.apps.api.response import SuccessEnvelope, success_response
from agentdesk.persistence.db import pool_stats
from agentdesk.services.telemetry import availability, counters_snapshot, p95_latency

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)

_WINDOW_S = 300


class HealthResponse(BaseModel):
    status: str
    availability_5m: float | None = None
    inbound_p95_ms_5m: float | None = None
    counters: dict[str, int] = Field(default_factory=dict)
    db_pool: dict[str, int | None] = Field(default_factory=dict)


@router.get("/health", response_model=SuccessEnvelope[HealthResponse] | HealthResponse)
async def health(request: Request) -> dict:
    payload = HealthResponse(
        status="ok",
        availability_5m=availability(_WINDOW_S),
        inbound_p95_ms_5m=p95_latency(_WINDOW_S, route_class="inbound"),
        counters=counters_snapshot(),
        db_pool=pool_stats(),
    )
    return success_response(request=request, data=payload)
