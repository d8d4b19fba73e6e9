"""Async pacer spacing out calls to one outbound channel."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict


class AsyncPacer:
    """Guarantees at least ``min_interval`` seconds between consecutive turns.

    Callers ``await pacer.wait_turn()`` before each outbound call. Slots are
    reserved under a lock, so concurrent callers queue up instead of bursting.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], "asyncio.Future"] = asyncio.sleep,
    ) -> None:
        self.min_interval = max(0.0, float(min_interval))
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._next_at = 0.0
        self.turns = 0

    async def wait_turn(self) -> float:
        """Wait for the next slot; returns how long this caller slept."""
        async with self._lock:
            now = self._clock()
            if now < self._next_at:
                sleep_for = self._next_at - now
                self._next_at += self.min_interval
            else:
                sleep_for = 0.0
                self._next_at = now + self.min_interval
            self.turns += 1

        if sleep_for > 0:
            await self._sleep(sleep_for)
        return sleep_for

    def snapshot(self) -> Dict[str, float]:
        return {"min_interval": self.min_interval, "turns": float(self.turns)}
