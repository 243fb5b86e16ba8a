"""Pytest configuration and shared fixtures."""

import asyncio

import pytest

from codeconnect.store.memory import MemoryCodeStore


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SlowSwapStore(MemoryCodeStore):
    """Memory store whose conditional updates take a while to land."""

    def __init__(self, clock, delay: float = 0.02):
        super().__init__(clock=clock)
        self.delay = delay

    async def compare_and_swap(self, key, expected, changes):
        await asyncio.sleep(self.delay)
        return await super().compare_and_swap(key, expected, changes)


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from codeconnect.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def clock():
    """Shared fake clock for store and manager."""
    return FakeClock()


@pytest.fixture
def slow_store(clock):
    """Store with a 20 ms window between a conditional write and its effect."""
    return SlowSwapStore(clock)
