"""Sync checkpoint management backed by the ``sync_checkpoints`` table."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from govsync.core.config import RefreshKind, SyncConfig
from govsync.core.logging import get_logger
from govsync.core.time_utils import ensure_utc
from govsync.models.checkpoints import RefreshStatus, SyncCheckpoint

log = get_logger("checkpoints")

SOURCE_ROW = ""


class CheckpointStore:
    """Reads and writes per-source progress markers and adaptive rates.

    Writes are last-write-wins except for ``checkpoint`` itself, which is
    never moved backward. Rates are clamped into the kind's bounds both on
    read and on write. The store flushes but never commits; the caller owns
    the transaction.
    """

    def __init__(self, db: Session, config: SyncConfig):
        self.db = db
        self.config = config

    def get(self, source_id: str, kind: RefreshKind, voter: str = SOURCE_ROW) -> Optional[SyncCheckpoint]:
        row = self.db.get(SyncCheckpoint, (source_id, kind.value, voter))
        if row is None:
            return None
        clamped = self.config.tuning(kind).clamp(row.rate)
        if clamped != row.rate:
            log.warning(f"Clamping out-of-bounds rate source={source_id} kind={kind.value} rate={row.rate}->{clamped}")
            row.rate = clamped
        return row

    def ensure(
        self,
        source_id: str,
        kind: RefreshKind,
        voter: str = SOURCE_ROW,
        start: int = 0,
    ) -> SyncCheckpoint:
        """Return the row, creating it at ``start`` with the kind's initial rate if missing."""
        row = self.get(source_id, kind, voter)
        if row is not None:
            return row

        tuning = self.config.tuning(kind)
        row = SyncCheckpoint(
            source_id=source_id,
            kind=kind.value,
            voter_address=voter,
            checkpoint=max(start, 0),
            rate=tuning.clamp(tuning.rate_initial),
            status=RefreshStatus.DONE,
            uptodate=False,
            consecutive_failures=0,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def set(
        self,
        source_id: str,
        kind: RefreshKind,
        *,
        voter: str = SOURCE_ROW,
        checkpoint: Optional[int] = None,
        rate: Optional[int] = None,
        status: Optional[RefreshStatus] = None,
        uptodate: Optional[bool] = None,
        refreshed_at: Optional[datetime] = None,
    ) -> SyncCheckpoint:
        row = self.ensure(source_id, kind, voter)

        if checkpoint is not None:
            if checkpoint < row.checkpoint:
                log.debug(
                    f"Ignoring backward checkpoint source={source_id} kind={kind.value} "
                    f"voter={voter or '-'} current={row.checkpoint} proposed={checkpoint}"
                )
            else:
                row.checkpoint = checkpoint
        if rate is not None:
            row.rate = self.config.tuning(kind).clamp(rate)
        if status is not None:
            row.status = status
        if uptodate is not None:
            row.uptodate = uptodate
        if refreshed_at is not None:
            row.last_refreshed_at = refreshed_at

        self.db.flush()
        return row

    def advance(self, source_id: str, kind: RefreshKind, checkpoint: int, voter: str = SOURCE_ROW) -> int:
        """Move the checkpoint forward and return the stored value."""
        return self.set(source_id, kind, voter=voter, checkpoint=checkpoint).checkpoint

    # -------------------------------------------------------------------------
    # Scheduling queries
    # -------------------------------------------------------------------------
    def due(self, kind: RefreshKind, now: datetime, limit: Optional[int] = None, voters: bool = False) -> List[SyncCheckpoint]:
        """Rows whose last refresh is older than the kind's interval (done) or retry delay (new).

        ``voters`` selects per-voter rows instead of source-level rows.
        """
        tuning = self.config.tuning(kind)
        done_cutoff = now - timedelta(seconds=tuning.interval_seconds)
        new_cutoff = now - timedelta(seconds=tuning.retry_seconds)

        voter_filter = SyncCheckpoint.voter_address != SOURCE_ROW if voters else SyncCheckpoint.voter_address == SOURCE_ROW
        stmt = (
            select(SyncCheckpoint)
            .where(SyncCheckpoint.kind == kind.value)
            .where(voter_filter)
            .where(
                or_(
                    SyncCheckpoint.last_refreshed_at.is_(None),
                    and_(
                        SyncCheckpoint.status == RefreshStatus.DONE,
                        SyncCheckpoint.last_refreshed_at < done_cutoff,
                    ),
                    and_(
                        SyncCheckpoint.status == RefreshStatus.NEW,
                        SyncCheckpoint.last_refreshed_at < new_cutoff,
                    ),
                )
            )
            .order_by(SyncCheckpoint.last_refreshed_at.asc().nulls_first(), SyncCheckpoint.source_id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.db.execute(stmt).scalars())

    def sources(self, kind: Optional[RefreshKind] = None) -> List[SyncCheckpoint]:
        stmt = select(SyncCheckpoint).where(SyncCheckpoint.voter_address == SOURCE_ROW)
        if kind is not None:
            stmt = stmt.where(SyncCheckpoint.kind == kind.value)
        return list(self.db.execute(stmt.order_by(SyncCheckpoint.kind, SyncCheckpoint.source_id)).scalars())

    def stuck(self) -> List[SyncCheckpoint]:
        """Sources failing for at least the stuck threshold while already at the minimum rate."""
        threshold = self.config.stuck_source_threshold
        if not threshold:
            return []
        stmt = select(SyncCheckpoint).where(
            SyncCheckpoint.voter_address == SOURCE_ROW,
            SyncCheckpoint.consecutive_failures >= threshold,
        )
        return [
            row
            for row in self.db.execute(stmt).scalars()
            if row.rate <= self.config.tuning(RefreshKind(row.kind)).rate_min
        ]

    @staticmethod
    def last_refreshed(row: SyncCheckpoint) -> Optional[datetime]:
        return ensure_utc(row.last_refreshed_at)
