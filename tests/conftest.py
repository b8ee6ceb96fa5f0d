"""Shared fixtures for the actioncue test suite."""

import pytest

from actioncue import ActionStore, ClaimManager, HandlerRegistry, Runner
from actioncue.retry import RetryPolicy

T0 = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock, callable like time.time."""

    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def store(clock):
    """Open an in-memory store and close it after the test."""
    s = ActionStore(":memory:", clock=clock)
    await s.open()
    yield s
    await s.close()


@pytest.fixture
def claims(store):
    return ClaimManager(store, holder="test-worker")


@pytest.fixture
def registry():
    return HandlerRegistry()


@pytest.fixture
def runner(store, registry, claims):
    return Runner(
        store,
        registry,
        claims,
        retry=RetryPolicy(max_attempts=3, backoff="fixed", base_delay=10.0, jitter=0.0),
        execution_timeout=5.0,
    )
