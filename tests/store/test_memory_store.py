"""Tests for the in-process code store."""

import asyncio

import pytest

from codeconnect.store.memory import MemoryCodeStore


@pytest.fixture
def store(clock):
    return MemoryCodeStore(clock=clock)


class TestSetIfAbsent:
    @pytest.mark.asyncio
    async def test_writes_new_key(self, store):
        assert await store.set_if_absent("AAAA", {"state": "pending"}, 60) is True
        assert await store.get("AAAA") == {"state": "pending"}

    @pytest.mark.asyncio
    async def test_refuses_existing_key(self, store):
        await store.set_if_absent("AAAA", {"n": 1}, 60)
        assert await store.set_if_absent("AAAA", {"n": 2}, 60) is False
        assert await store.get("AAAA") == {"n": 1}

    @pytest.mark.asyncio
    async def test_expired_key_can_be_rewritten(self, store, clock):
        await store.set_if_absent("AAAA", {"n": 1}, 60)
        clock.advance(60)
        assert await store.set_if_absent("AAAA", {"n": 2}, 60) is True

    @pytest.mark.asyncio
    async def test_concurrent_writers_one_wins(self, store):
        results = await asyncio.gather(
            *[store.set_if_absent("AAAA", {"n": i}, 60) for i in range(5)]
        )
        assert results.count(True) == 1


class TestGet:
    @pytest.mark.asyncio
    async def test_missing_key(self, store):
        assert await store.get("NOPE") is None

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, store, clock):
        await store.set_if_absent("AAAA", {"n": 1}, 60)
        clock.advance(59)
        assert await store.get("AAAA") is not None
        clock.advance(1)
        assert await store.get("AAAA") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_returns_copy(self, store):
        """Mutating a returned value never touches the stored one."""
        await store.set_if_absent("AAAA", {"claimants": []}, 60)
        value = await store.get("AAAA")
        value["claimants"].append("x")
        assert await store.get("AAAA") == {"claimants": []}


class TestCompareAndSwap:
    @pytest.mark.asyncio
    async def test_applies_when_expected_matches(self, store):
        await store.set_if_absent("AAAA", {"state": "pending", "claim_count": 0}, 60)

        swapped = await store.compare_and_swap(
            "AAAA", {"state": "pending", "claim_count": 0}, {"state": "claimed"}
        )

        assert swapped is True
        assert await store.get("AAAA") == {"state": "claimed", "claim_count": 0}

    @pytest.mark.asyncio
    async def test_rejects_mismatch(self, store):
        await store.set_if_absent("AAAA", {"state": "claimed"}, 60)
        swapped = await store.compare_and_swap(
            "AAAA", {"state": "pending"}, {"state": "closed"}
        )
        assert swapped is False
        assert (await store.get("AAAA"))["state"] == "claimed"

    @pytest.mark.asyncio
    async def test_missing_key(self, store):
        assert await store.compare_and_swap("AAAA", {}, {"state": "x"}) is False

    @pytest.mark.asyncio
    async def test_keeps_ttl(self, store, clock):
        await store.set_if_absent("AAAA", {"state": "pending"}, 60)
        clock.advance(30)
        await store.compare_and_swap("AAAA", {"state": "pending"}, {"state": "claimed"})
        clock.advance(30)
        assert await store.get("AAAA") is None

    @pytest.mark.asyncio
    async def test_concurrent_swaps_one_wins(self, store):
        await store.set_if_absent("AAAA", {"state": "pending"}, 60)
        results = await asyncio.gather(
            *[
                store.compare_and_swap("AAAA", {"state": "pending"}, {"state": "claimed"})
                for _ in range(10)
            ]
        )
        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_compare_and_swap_state(self, store):
        await store.set_if_absent("AAAA", {"state": "pending"}, 60)
        assert await store.compare_and_swap_state(
            "AAAA", "pending", "claimed", {"claim_count": 1}
        )
        assert await store.get("AAAA") == {"state": "claimed", "claim_count": 1}
        assert not await store.compare_and_swap_state("AAAA", "pending", "closed")


class TestDeleteAndKeys:
    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.set_if_absent("AAAA", {}, 60)
        assert await store.delete("AAAA") is True
        assert await store.delete("AAAA") is False

    @pytest.mark.asyncio
    async def test_keys_skip_expired(self, store, clock):
        await store.set_if_absent("AAAA", {}, 10)
        await store.set_if_absent("BBBB", {}, 100)
        clock.advance(50)
        assert await store.keys() == ["BBBB"]

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping() is True
