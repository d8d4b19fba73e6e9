"""Adaptive rate control: ramp up on success, back off on failure."""

from __future__ import annotations

from govsync.core.config import SyncTuning


class RateController:
    """Multiplicative increase / multiplicative decrease within the kind's bounds.

    Steps are integer percentages of the current rate with a minimum step of
    one, so small rates still move.
    """

    def __init__(self, tuning: SyncTuning):
        self.tuning = tuning

    def _step(self, rate: int, pct: int) -> int:
        return max(rate * pct // 100, 1)

    def ramp_up(self, rate: int) -> int:
        rate = self.tuning.clamp(rate)
        return min(rate + self._step(rate, self.tuning.success_pct), self.tuning.rate_max)

    def back_off(self, rate: int) -> int:
        rate = self.tuning.clamp(rate)
        return max(rate - self._step(rate, self.tuning.failure_pct), self.tuning.rate_min)

    def apply(self, rate: int, ok: bool) -> int:
        return self.ramp_up(rate) if ok else self.back_off(rate)

    def apply_batch(self, rate: int, succeeded: int, failed: int) -> int:
        """Vote batches report per voter: one ramp-up if any succeeded, then one back-off if any failed."""
        if succeeded:
            rate = self.ramp_up(rate)
        if failed:
            rate = self.back_off(rate)
        return self.tuning.clamp(rate)
