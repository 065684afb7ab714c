"""Tests for the per-key lock table."""

from __future__ import annotations

import asyncio

from src.services.locks import KeyedLocks


class TestKeyedLocks:
    async def test_entry_dropped_after_release(self) -> None:
        locks = KeyedLocks()
        async with locks("appt-1"):
            assert len(locks) == 1
        assert len(locks) == 0

    async def test_many_keys_leave_nothing_behind(self) -> None:
        locks = KeyedLocks()
        for index in range(500):
            async with locks(f"appt-{index}"):
                pass
        assert len(locks) == 0

    async def test_same_key_is_serialised(self) -> None:
        locks = KeyedLocks()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks("provider-1"):
                order.append(f"{name}:in")
                await asyncio.sleep(0.01)
                order.append(f"{name}:out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a:in", "a:out", "b:in", "b:out"]
        assert len(locks) == 0

    async def test_waiter_keeps_entry_alive(self) -> None:
        locks = KeyedLocks()
        release = asyncio.Event()

        async def holder() -> None:
            async with locks("k"):
                await release.wait()

        async def waiter() -> None:
            async with locks("k"):
                pass

        tasks = [asyncio.create_task(holder()), asyncio.create_task(waiter())]
        await asyncio.sleep(0)
        assert len(locks) == 1
        release.set()
        await asyncio.gather(*tasks)
        assert len(locks) == 0

    async def test_exception_releases_entry(self) -> None:
        locks = KeyedLocks()
        try:
            async with locks("k"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert len(locks) == 0
        async with locks("k"):
            assert len(locks) == 1

    async def test_different_keys_run_concurrently(self) -> None:
        locks = KeyedLocks()
        inside = asyncio.Event()
        release = asyncio.Event()

        async def first() -> None:
            async with locks("a"):
                inside.set()
                await release.wait()

        task = asyncio.create_task(first())
        await inside.wait()
        async with locks("b"):
            assert len(locks) == 2
        release.set()
        await task
