"""Decides which sources (and voters) are due for a refresh."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from govsync.core.checkpoints import SOURCE_ROW, CheckpointStore
from govsync.core.config import RefreshKind, SyncConfig
from govsync.core.logging import get_logger
from govsync.core.time_utils import utcnow
from govsync.models.checkpoints import RefreshStatus, SyncCheckpoint
from govsync.models.dao import DaoHandler, HandlerType
from govsync.models.vote import Voter
from govsync.sync.queue import WorkItem

log = get_logger("queue_builder")


class QueueBuilder:
    """Producer side of the scheduler.

    Makes sure every handler (and every tracked voter, for vote kinds) has a
    checkpoint row, then lists the rows that are due. Enqueued rows are
    flagged ``new`` so a crash mid-refresh is retried after the kind's retry
    delay instead of the full interval.
    """

    def __init__(self, session_factory: Callable[[], Session], config: SyncConfig):
        self.session_factory = session_factory
        self.config = config

    def due_items(self, kind: RefreshKind, now: Optional[datetime] = None) -> List[WorkItem]:
        now = now or utcnow()
        with self.session_factory() as db:
            store = CheckpointStore(db, self.config)
            handlers = self._handlers(db, kind)
            for handler in handlers:
                store.ensure(handler.id, kind, start=self._start(handler, kind))

            if kind.is_votes:
                self._ensure_voter_rows(db, store, kind, handlers)
                items = self._voter_items(store, kind, now)
            else:
                items = [WorkItem(source_id=row.source_id, kind=kind) for row in store.due(kind, now)]

            db.commit()

        if items:
            log.debug(f"{kind.value}: {len(items)} due")
        return items

    def mark_enqueued(self, items: Iterable[WorkItem], now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        with self.session_factory() as db:
            store = CheckpointStore(db, self.config)
            for item in items:
                store.set(item.source_id, item.kind, status=RefreshStatus.NEW, refreshed_at=now)
                for voter in item.voters:
                    store.set(item.source_id, item.kind, voter=voter, status=RefreshStatus.NEW, refreshed_at=now)
            db.commit()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    @staticmethod
    def _handlers(db: Session, kind: RefreshKind) -> List[DaoHandler]:
        stmt = select(DaoHandler).order_by(DaoHandler.id)
        if kind.is_chain:
            stmt = stmt.where(DaoHandler.type != HandlerType.SNAPSHOT)
        else:
            stmt = stmt.where(DaoHandler.type == HandlerType.SNAPSHOT)
        return list(db.execute(stmt).scalars())

    @staticmethod
    def _start(handler: DaoHandler, kind: RefreshKind) -> int:
        if not kind.is_chain:
            return 0
        try:
            return int((handler.decoder or {}).get("startBlock") or 0)
        except (TypeError, ValueError):
            return 0

    def _ensure_voter_rows(
        self, db: Session, store: CheckpointStore, kind: RefreshKind, handlers: List[DaoHandler]
    ) -> None:
        voters = [address.lower() for address in db.execute(select(Voter.address)).scalars()]
        if not voters or not handlers:
            return

        existing = set(
            db.execute(
                select(SyncCheckpoint.source_id, SyncCheckpoint.voter_address).where(
                    SyncCheckpoint.kind == kind.value,
                    SyncCheckpoint.voter_address != SOURCE_ROW,
                )
            ).tuples()
        )
        created = 0
        for handler in handlers:
            for voter in voters:
                if (handler.id, voter) not in existing:
                    store.ensure(handler.id, kind, voter=voter, start=self._start(handler, kind))
                    created += 1
        if created:
            log.info(f"{kind.value}: tracking {created} new voter checkpoints")

    def _voter_items(self, store: CheckpointStore, kind: RefreshKind, now: datetime) -> List[WorkItem]:
        batch = max(self.config.tuning(kind).voters_per_item, 1)
        grouped: Dict[str, List[str]] = {}
        for row in store.due(kind, now, voters=True):
            voters = grouped.setdefault(row.source_id, [])
            if len(voters) < batch:
                voters.append(row.voter_address)

        return [
            WorkItem(source_id=source_id, kind=kind, voters=tuple(voters))
            for source_id, voters in grouped.items()
        ]
