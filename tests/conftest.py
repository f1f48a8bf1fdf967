"""
Shared fixtures.

FakeClock drives rate limiter timing without wall-clock sleeps.
"""

import asyncio

import pytest


class FakeClock:
    """Simulated monotonic clock in seconds.

    ``sleep`` advances the clock by the requested time and yields
    once to the event loop.
    """

    def __init__(self, start: float = 0.0):
        self.time = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.time

    def advance(self, seconds: float) -> None:
        self.time += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.time += seconds
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock():
    return FakeClock()
