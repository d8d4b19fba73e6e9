"""Checkpoint advancement rules.

Chain sources keep still-open proposals inside the next window: the new
checkpoint is the earliest creation block among open proposals, or the
window end when nothing is open. Snapshot sources apply the same idea to
creation timestamps: earliest open proposal of the current year, else
latest finalized one. Both rules are pure and never move a checkpoint back.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence, Tuple

from govsync.core.time_utils import ensure_utc
from govsync.schemas.records import ProposalRecord, VoteRecord
from govsync.sync.window import ScanWindow

UPTODATE_LAG_SECONDS = 60 * 60


def advance_chain_checkpoint(
    current: int,
    window: ScanWindow,
    records: Sequence[ProposalRecord],
    now: datetime,
) -> int:
    open_blocks = [
        rec.block_created
        for rec in records
        if rec.block_created is not None and rec.is_open(now)
    ]
    new = min(open_blocks) if open_blocks else window.end
    return max(new, current)


def advance_snapshot_checkpoint(
    current: int,
    records: Sequence[ProposalRecord],
    now: datetime,
) -> Tuple[int, bool]:
    """Return ``(checkpoint, uptodate)`` in unix seconds."""
    open_created = [
        rec.created
        for rec in records
        if not rec.finalized and ensure_utc(rec.time_end).year == now.year
    ]
    closed_created = [rec.created for rec in records if rec.finalized]

    if open_created:
        new = min(open_created)
    elif closed_created:
        new = max(closed_created)
    else:
        new = current

    new = max(new, current)
    uptodate = new - current < UPTODATE_LAG_SECONDS
    return new, uptodate


def should_persist_snapshot(
    stored_checkpoint: int,
    stored_uptodate: bool,
    checkpoint: int,
    uptodate: bool,
    threshold: int,
) -> bool:
    """Skip writes for a healthy source that produced nothing new this cycle."""
    return checkpoint - stored_checkpoint > threshold or uptodate != stored_uptodate


def advance_chain_vote_checkpoint(current: int, window: ScanWindow) -> int:
    return max(window.end, current)


def advance_snapshot_vote_checkpoint(current: int, votes: Iterable[VoteRecord]) -> int:
    created = [
        int(ensure_utc(vote.time_created).timestamp())
        for vote in votes
        if vote.time_created is not None
    ]
    return max(max(created, default=current), current)
