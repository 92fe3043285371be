"""
Test suite for KeyedLock.

System role: Verification of per-session serialization
"""

import asyncio

import pytest

from auth_sessions.session import KeyedLock


class TestKeyedLock:
    """Test suite for KeyedLock."""

    @pytest.mark.asyncio
    async def test_same_key_should_serialize(self) -> None:
        locks = KeyedLock()
        order = []

        async def worker(name):
            async with locks.hold("s1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_different_keys_should_not_block(self) -> None:
        locks = KeyedLock()
        entered = asyncio.Event()

        async def first():
            async with locks.hold("s1"):
                await asyncio.wait_for(entered.wait(), timeout=1)

        async def second():
            async with locks.hold("s2"):
                entered.set()

        await asyncio.gather(first(), second())

    @pytest.mark.asyncio
    async def test_unused_locks_should_be_dropped(self) -> None:
        locks = KeyedLock()

        async with locks.hold("s1"):
            assert locks.is_locked("s1")
            assert len(locks) == 1

        assert len(locks) == 0
        assert not locks.is_locked("s1")

    @pytest.mark.asyncio
    async def test_lock_should_be_released_on_error(self) -> None:
        locks = KeyedLock()

        with pytest.raises(RuntimeError):
            async with locks.hold("s1"):
                raise RuntimeError("boom")

        assert len(locks) == 0
