from __future__ import annotations

import os
import tempfile

# Point settings at a throwaway SQLite file before any agentdesk module builds the engine.
_DB_DIR = tempfile.mkdtemp(prefix="agentdesk-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'agentdesk.db')}"
os.environ.setdefault("AUTH_ENABLED", "true")
os.environ.setdefault("AUTH_DEV_BYPASS", "false")
os.environ.setdefault("IDLE_SWEEP_ENABLED", "false")
os.environ.setdefault("AUTO_RESOLVE_ENABLED", "false")

import pytest

from agentdesk.apps.api.deps import clear_auth_cache
from agentdesk.core.config import get_settings
from agentdesk.domain.models import Base
from agentdesk.persistence.db import engine
from agentdesk.services.telemetry import reset_telemetry


@pytest.fixture(autouse=True)
async def reset_database_between_tests() -> None:
    # Fresh schema per test; dispose afterwards so connections never cross event loops.
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)
    clear_auth_cache()
    reset_telemetry()
    yield
    await engine.dispose()


@pytest.fixture
def settings_override():
    # Mutate the cached Settings for one test and restore every touched field afterwards.
    settings = get_settings()
    original: dict[str, object] = {}

    def _apply(**values: object) -> None:
        for key, value in values.items():
            original.setdefault(key, getattr(settings, key))
            setattr(settings, key, value)

    yield _apply
    for key, value in original.items():
        setattr(settings, key, value)
