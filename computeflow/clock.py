"""Clock abstraction used for polling intervals and wait steps."""

from __future__ import annotations

import asyncio
from typing import Protocol


class Clock(Protocol):
    """Source of monotonic time and suspension."""

    def monotonic(self) -> float:
        """Return seconds from an arbitrary fixed point."""

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for ``seconds``."""


class SystemClock:
    """Real time, backed by the running event loop."""

    def monotonic(self) -> float:
        return asyncio.get_running_loop().time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class FakeClock:
    """Virtual time for tests.

    ``sleep`` advances the virtual clock immediately and yields control once,
    so code that polls on an interval completes without waiting in real time.
    Every requested sleep is kept in ``sleeps`` for assertions.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._now += max(0.0, seconds)
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self._now += seconds
