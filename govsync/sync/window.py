"""Block window planning for on-chain sources."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ScanWindow:
    start: int
    end: int

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    @property
    def size(self) -> int:
        return max(self.end - self.start, 0)


def plan_window(checkpoint: int, rate: int, chain_head: int, safety_lag: int) -> ScanWindow:
    """Next block range to scan.

    The window starts at the checkpoint and spans at most ``rate`` blocks.
    Its end never comes closer than ``safety_lag`` blocks to the head, so
    blocks that may still be reorganized are left for a later cycle. The
    start is never moved backward; when the clamp pulls the end to or below
    the start the window is empty and nothing is fetched.
    """
    start = checkpoint
    if chain_head - start > rate:
        end = start + rate
    else:
        end = chain_head

    end = min(end, chain_head - safety_lag)
    return ScanWindow(start=start, end=end)
