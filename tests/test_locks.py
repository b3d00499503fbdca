"""Tests for per-key locks."""

import asyncio

import pytest

from minechat.core.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = KeyedLock()
    order: list[str] = []

    async def worker(name: str) -> None:
        async with locks.hold("tenant-1"):
            order.append(f"{name}:start")
            await asyncio.sleep(0)
            order.append(f"{name}:end")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a:start", "a:end", "b:start", "b:end"]


@pytest.mark.asyncio
async def test_locks_are_dropped_when_idle():
    locks = KeyedLock()

    async with locks.hold("tenant-1"):
        assert locks.locked("tenant-1")
        assert not locks.locked("tenant-2")
        assert len(locks) == 1

    assert not locks.locked("tenant-1")
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_released_on_error():
    locks = KeyedLock()

    with pytest.raises(RuntimeError):
        async with locks.hold("tenant-1"):
            raise RuntimeError("boom")

    assert len(locks) == 0
