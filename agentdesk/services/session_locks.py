"""Keyed mutual exclusion for conversation sessions.

Appends, resolutions and the idle sweep for one ``(agent_id, session_id)`` pair
run one at a time; unrelated sessions never contend. Entries are reference
counted and dropped as soon as nobody holds or waits on them, so the table only
ever contains keys with in-flight work.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator


SessionKey = tuple[str, str]


@dataclass
class _Entry:
    lock: asyncio.Lock
    refs: int = 0


class SessionLockTable:
    def __init__(self) -> None:
        self._entries: dict[SessionKey, _Entry] = {}

    @asynccontextmanager
    async def hold(self, agent_id: str, session_id: str) -> AsyncIterator[None]:
        key = (agent_id, session_id)
        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry(lock=asyncio.Lock())
            self._entries[key] = entry
        # Count waiters too, so an entry is never evicted while someone queues on it.
        entry.refs += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.refs -= 1
            if entry.refs == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def is_tracked(self, agent_id: str, session_id: str) -> bool:
        return (agent_id, session_id) in self._entries

    def __len__(self) -> int:
        return len(self._entries)


_default_table = SessionLockTable()


def get_session_locks() -> SessionLockTable:
    return _default_table
