from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
import logging
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from agentdesk.apps.api.errors import (
    agentdesk_exception_handler,
    http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from agentdesk.apps.api.response import API_VERSION
from agentdesk.apps.api.routes.agents import router as agents_router
from agentdesk.apps.api.routes.conversations import router as conversations_router
from agentdesk.apps.api.routes.dashboard import router as dashboard_router
from agentdesk.apps.api.routes.health import router as health_router
from agentdesk.apps.api.routes.knowledge import router as knowledge_router
from agentdesk.apps.api.routes.messages import router as messages_router
from agentdesk.core.config import get_settings
from agentdesk.core.errors import AgentDeskError
from agentdesk.core.logging import configure_logging
from agentdesk.persistence.guards import TenantPredicateError
from agentdesk.services.idle_sweep import run_idle_sweep_loop
from agentdesk.services.telemetry import classify_route, record_request


logger = logging.getLogger(__name__)

_LEGACY_SUNSET_DAYS = 90
_LEGACY_EXEMPT_PREFIXES = (
    "/v1",
    "/docs",
    "/openapi.json",
    "/redoc",
)

_ROUTERS = (
    agents_router,
    knowledge_router,
    messages_router,
    conversations_router,
    dashboard_router,
    health_router,
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Run the idle sweep in-process only when no dedicated worker is deployed.
    sweep_task: asyncio.Task | None = None
    if get_settings().idle_sweep_enabled:
        sweep_task = asyncio.create_task(run_idle_sweep_loop())
        logger.info("idle_sweep_started mode=in_process")
    try:
        yield
    finally:
        if sweep_task is not None:
            sweep_task.cancel()
            with suppress(asyncio.CancelledError):
                await sweep_task


def _mark_legacy(response: Response) -> None:
    sunset_at = datetime.now(timezone.utc) + timedelta(days=_LEGACY_SUNSET_DAYS)
    response.headers["Deprecation"] = "true"
    response.headers["Sunset"] = format_datetime(sunset_at)
    response.headers["Link"] = '</v1/docs>; rel="successor-version"'


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="AgentDesk API", version=API_VERSION, lifespan=lifespan)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        record_request(
            path=request.url.path,
            route_class=classify_route(request.url.path),
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        if not request.url.path.startswith(_LEGACY_EXEMPT_PREFIXES):
            _mark_legacy(response)
        return response

    # Handlers resolve along the exception MRO; Exception is the 500 fallback.
    app.add_exception_handler(AgentDeskError, agentdesk_exception_handler)
    app.add_exception_handler(TenantPredicateError, tenant_predicate_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    for router in _ROUTERS:
        app.include_router(router, prefix=f"/{API_VERSION}")
    # Unversioned aliases stay mounted for older channel integrations.
    for router in _ROUTERS:
        app.include_router(router, include_in_schema=False)

    return app


app = create_app()
