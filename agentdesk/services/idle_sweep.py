"""Idle-timeout sweep: resolves open conversations nobody has touched for a while."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agentdesk.core.config import get_settings
from agentdesk.persistence.db import SessionLocal
from agentdesk.persistence.repos import conversations as conversations_repo
from agentdesk.services.conversations import resolve_if_idle
from agentdesk.services.session_locks import SessionLockTable, get_session_locks


logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    cutoff: datetime
    scanned: int = 0
    resolved: list[str] = field(default_factory=list)
    skipped: int = 0
    failed: int = 0


async def _sweep(
    session: AsyncSession,
    *,
    cutoff: datetime,
    batch_size: int,
    locks: SessionLockTable,
) -> SweepResult:
    result = SweepResult(cutoff=cutoff)
    candidates = await conversations_repo.list_idle_open(session, cutoff=cutoff, limit=batch_size)
    # Release the read snapshot before taking per-session locks.
    await session.commit()
    result.scanned = len(candidates)
    for conversation_id, agent_id, session_id in candidates:
        try:
            changed = await resolve_if_idle(
                session,
                conversation_id=conversation_id,
                agent_id=agent_id,
                session_id=session_id,
                cutoff=cutoff,
                locks=locks,
            )
        except SQLAlchemyError:
            await session.rollback()
            result.failed += 1
            logger.exception("idle_sweep_resolve_failed conversation_id=%s", conversation_id)
            continue
        if changed:
            result.resolved.append(conversation_id)
        else:
            result.skipped += 1
    return result


async def sweep_idle_conversations(
    now: datetime | None = None,
    *,
    session: AsyncSession | None = None,
    locks: SessionLockTable | None = None,
) -> SweepResult:
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=settings.conversation_idle_timeout_s)
    batch_size = max(1, int(settings.idle_sweep_batch_size))
    if locks is None:
        locks = get_session_locks()

    if session is not None:
        result = await _sweep(session, cutoff=cutoff, batch_size=batch_size, locks=locks)
    else:
        async with SessionLocal() as owned_session:
            result = await _sweep(owned_session, cutoff=cutoff, batch_size=batch_size, locks=locks)

    if result.scanned:
        logger.info(
            "idle_sweep_completed scanned=%s resolved=%s skipped=%s failed=%s",
            result.scanned,
            len(result.resolved),
            result.skipped,
            result.failed,
        )
    return result


async def run_idle_sweep_loop() -> None:
    # Sweep on a fixed cadence and keep going after failures.
    interval = max(1, int(get_settings().idle_sweep_interval_s))
    while True:
        try:
            await sweep_idle_conversations()
        except Exception:  # noqa: BLE001 - keep loop alive while surfacing errors in logs.
            logger.exception("idle sweep cycle failed")
        await asyncio.sleep(interval)
