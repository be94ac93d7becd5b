from __future__ import annotations

import asyncio

from agentdesk.services.session_locks import SessionLockTable


async def test_entries_are_evicted_after_release() -> None:
    locks = SessionLockTable()
    async with locks.hold("a1", "s1"):
        assert locks.is_tracked("a1", "s1")
        assert len(locks) == 1
    assert not locks.is_tracked("a1", "s1")
    assert len(locks) == 0


async def test_same_key_is_serialized() -> None:
    locks = SessionLockTable()
    events: list[str] = []

    async def worker(name: str) -> None:
        async with locks.hold("a1", "s1"):
            events.append(f"{name}-start")
            await asyncio.sleep(0.01)
            events.append(f"{name}-end")

    await asyncio.gather(worker("first"), worker("second"))
    assert events == ["first-start", "first-end", "second-start", "second-end"]
    assert len(locks) == 0


async def test_distinct_keys_do_not_contend() -> None:
    locks = SessionLockTable()
    inside = asyncio.Event()
    release = asyncio.Event()

    async def holder() -> None:
        async with locks.hold("a1", "s1"):
            inside.set()
            await release.wait()

    task = asyncio.create_task(holder())
    await inside.wait()
    # A different session id must be acquirable while s1 is held.
    async with locks.hold("a1", "s2"):
        assert len(locks) == 2
    release.set()
    await task
    assert len(locks) == 0


async def test_waiters_keep_entry_alive() -> None:
    locks = SessionLockTable()
    first_inside = asyncio.Event()
    release = asyncio.Event()

    async def first() -> None:
        async with locks.hold("a1", "s1"):
            first_inside.set()
            await release.wait()

    async def second() -> None:
        async with locks.hold("a1", "s1"):
            return

    task_one = asyncio.create_task(first())
    await first_inside.wait()
    task_two = asyncio.create_task(second())
    await asyncio.sleep(0)
    release.set()
    await asyncio.gather(task_one, task_two)
    assert len(locks) == 0
