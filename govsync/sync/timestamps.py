"""Block number -> wall clock time, with extrapolation for blocks not mined yet."""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Optional, Protocol

from govsync.core.errors import NotYetMined
from govsync.core.time_utils import from_unix


class BlockClock(Protocol):
    async def block_timestamp(self, number: int) -> int: ...


class TimestampEstimator:
    """Resolves block timestamps through the node, caching mined blocks.

    Voting windows of fresh proposals usually end in the future, so the end
    block does not exist yet. Those get an estimate extrapolated from a mined
    reference block; the estimate is recomputed on every scan and converges
    to the real value once the block is mined.
    """

    def __init__(self, clock: BlockClock, seconds_per_block: int = 12, cache_size: int = 4096):
        self.clock = clock
        self.seconds_per_block = seconds_per_block
        self.cache_size = cache_size
        self._cache: "OrderedDict[int, datetime]" = OrderedDict()

    async def resolve(self, block: int) -> Optional[datetime]:
        """Real timestamp of ``block``, or None if it is not mined yet."""
        cached = self._cache.get(block)
        if cached is not None:
            self._cache.move_to_end(block)
            return cached

        try:
            seconds = await self.clock.block_timestamp(block)
        except NotYetMined:
            return None

        value = from_unix(seconds)
        self._cache[block] = value
        if len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return value

    def extrapolate(self, target: int, reference_block: int, reference_time: datetime) -> datetime:
        return reference_time + timedelta(seconds=(target - reference_block) * self.seconds_per_block)

    async def estimate(self, target: int, reference_block: int, reference_time: datetime) -> datetime:
        real = await self.resolve(target)
        if real is not None:
            return real
        return self.extrapolate(target, reference_block, reference_time)
