"""Refresh of one source for one kind: fetch, upsert, advance checkpoint."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from govsync.core.checkpoints import CheckpointStore
from govsync.core.config import RefreshKind, SyncConfig
from govsync.core.errors import FetchError, UnsupportedSource
from govsync.core.logging import get_logger
from govsync.core.time_utils import ensure_utc, utcnow
from govsync.ingestion.base import ChainFetcher, SinceQuery
from govsync.ingestion.registry import FetcherRegistry
from govsync.models.dao import DaoHandler, HandlerType
from govsync.models.proposal import Proposal
from govsync.models.vote import Vote, Voter
from govsync.schemas.records import ProposalRecord, VoteRecord
from govsync.sync.advance import (
    advance_chain_checkpoint,
    advance_chain_vote_checkpoint,
    advance_snapshot_checkpoint,
    advance_snapshot_vote_checkpoint,
    should_persist_snapshot,
)
from govsync.sync.queue import RefreshOutcome
from govsync.sync.window import plan_window

log = get_logger("refresh_service")

PROPOSAL_FIELDS = (
    "name",
    "choices",
    "scores",
    "scores_total",
    "quorum",
    "state",
    "block_created",
    "time_created",
    "time_start",
    "time_end",
    "url",
    "visible",
)

VOTE_FIELDS = ("choice", "voting_power", "reason", "block_created", "time_created")


class RefreshService:
    """Runs one incremental, idempotent refresh per call.

    Responsibilities:
    - Plan the block window (chain) or the since-timestamp query (snapshot)
    - Call the handler's fetcher
    - Upsert proposals / votes, writing only rows that changed
    - Advance the checkpoint so open proposals are never skipped

    Any failure rolls back and returns ``nok`` with the checkpoint untouched.
    Rate and status bookkeeping is left to the caller.
    """

    def __init__(self, db: Session, config: SyncConfig, fetchers: FetcherRegistry):
        self.db = db
        self.config = config
        self.fetchers = fetchers
        self.store = CheckpointStore(db, config)

    async def refresh_proposals(self, source_id: str, kind: RefreshKind, now: Optional[datetime] = None) -> RefreshOutcome:
        now = now or utcnow()
        try:
            handler = self._load_handler(source_id, kind)
            if kind is RefreshKind.CHAIN_PROPOSALS:
                stats = await self._refresh_chain_proposals(handler, now)
            elif kind is RefreshKind.SNAPSHOT_PROPOSALS:
                stats = await self._refresh_snapshot_proposals(handler, now)
            else:
                raise ValueError(f"{kind.value} is not a proposal kind")
            self.db.commit()
        except FetchError as exc:
            self.db.rollback()
            log.warning(f"{kind.value} refresh failed for {source_id}: {exc}")
            return RefreshOutcome(source_id=source_id, ok=False)
        except Exception as exc:  # noqa: BLE001
            self.db.rollback()
            log.exception(f"{kind.value} refresh crashed for {source_id}: {exc}")
            return RefreshOutcome(source_id=source_id, ok=False)

        log.info(f"{kind.value} refreshed {source_id} | {stats}")
        return RefreshOutcome(source_id=source_id, ok=True)

    async def refresh_votes(
        self,
        source_id: str,
        kind: RefreshKind,
        voters: Sequence[str],
        now: Optional[datetime] = None,
    ) -> RefreshOutcome:
        voters = [v.lower() for v in voters]
        try:
            handler = self._load_handler(source_id, kind)
            if kind is RefreshKind.CHAIN_VOTES:
                stats = await self._refresh_chain_votes(handler, voters)
            elif kind is RefreshKind.SNAPSHOT_VOTES:
                stats = await self._refresh_snapshot_votes(handler, voters)
            else:
                raise ValueError(f"{kind.value} is not a vote kind")
            self.db.commit()
        except FetchError as exc:
            self.db.rollback()
            log.warning(f"{kind.value} refresh failed for {source_id} ({len(voters)} voters): {exc}")
            return RefreshOutcome(source_id=source_id, ok=False, voters={v: False for v in voters})
        except Exception as exc:  # noqa: BLE001
            self.db.rollback()
            log.exception(f"{kind.value} refresh crashed for {source_id}: {exc}")
            return RefreshOutcome(source_id=source_id, ok=False, voters={v: False for v in voters})

        log.info(f"{kind.value} refreshed {source_id} | voters={len(voters)} {stats}")
        return RefreshOutcome(source_id=source_id, ok=True, voters={v: True for v in voters})

    async def run(self, source_id: str, kind: RefreshKind, voters: Sequence[str] = ()) -> RefreshOutcome:
        if kind.is_votes:
            return await self.refresh_votes(source_id, kind, voters)
        return await self.refresh_proposals(source_id, kind)

    # -------------------------------------------------------------------------
    # Proposals
    # -------------------------------------------------------------------------
    async def _refresh_chain_proposals(self, handler: DaoHandler, now: datetime) -> Dict[str, Any]:
        fetcher = self._chain_fetcher(handler)
        row = self.store.ensure(handler.id, RefreshKind.CHAIN_PROPOSALS, start=self._start_block(handler))

        head = await fetcher.chain_head()
        window = plan_window(row.checkpoint, row.rate, head, self.config.safety_lag)
        if window.is_empty:
            log.debug(f"Empty window for {handler.id} (checkpoint={row.checkpoint} head={head})")
            return {"window": None, "proposals": 0}

        records = await fetcher.fetch_proposals(handler, window)
        written = self._upsert_proposals(records)

        new_checkpoint = advance_chain_checkpoint(row.checkpoint, window, records, now)
        self.store.advance(handler.id, RefreshKind.CHAIN_PROPOSALS, new_checkpoint)

        return {"window": (window.start, window.end), "proposals": len(records), "written": written, "checkpoint": new_checkpoint}

    async def _refresh_snapshot_proposals(self, handler: DaoHandler, now: datetime) -> Dict[str, Any]:
        fetcher = self.fetchers.for_handler(handler)
        row = self.store.ensure(handler.id, RefreshKind.SNAPSHOT_PROPOSALS)

        query = SinceQuery(since=row.checkpoint, first=self.config.snapshot_page_size)
        records = await fetcher.fetch_proposals(handler, query)
        written = self._upsert_proposals(records)

        new_checkpoint, uptodate = advance_snapshot_checkpoint(row.checkpoint, records, now)
        if should_persist_snapshot(
            row.checkpoint, row.uptodate, new_checkpoint, uptodate, self.config.snapshot_persist_threshold
        ):
            self.store.set(handler.id, RefreshKind.SNAPSHOT_PROPOSALS, checkpoint=new_checkpoint, uptodate=uptodate)

        return {"since": query.since, "proposals": len(records), "written": written, "checkpoint": new_checkpoint}

    # -------------------------------------------------------------------------
    # Votes
    # -------------------------------------------------------------------------
    async def _refresh_chain_votes(self, handler: DaoHandler, voters: List[str]) -> Dict[str, Any]:
        fetcher = self._chain_fetcher(handler)
        source_row = self.store.ensure(handler.id, RefreshKind.CHAIN_VOTES, start=self._start_block(handler))
        voter_rows = {
            v: self.store.ensure(handler.id, RefreshKind.CHAIN_VOTES, voter=v, start=self._start_block(handler))
            for v in voters
        }

        head = await fetcher.chain_head()
        start = min(row.checkpoint for row in voter_rows.values()) if voter_rows else source_row.checkpoint
        window = plan_window(start, source_row.rate, head, self.config.safety_lag)
        if window.is_empty:
            return {"window": None, "votes": 0}

        votes = await fetcher.fetch_votes(handler, voters, window)
        written = self._upsert_votes(votes)

        for voter, row in voter_rows.items():
            self.store.advance(
                handler.id, RefreshKind.CHAIN_VOTES, advance_chain_vote_checkpoint(row.checkpoint, window), voter=voter
            )

        return {"window": (window.start, window.end), "votes": len(votes), "written": written}

    async def _refresh_snapshot_votes(self, handler: DaoHandler, voters: List[str]) -> Dict[str, Any]:
        fetcher = self.fetchers.for_handler(handler)
        self.store.ensure(handler.id, RefreshKind.SNAPSHOT_VOTES)
        voter_rows = {v: self.store.ensure(handler.id, RefreshKind.SNAPSHOT_VOTES, voter=v) for v in voters}

        since = min((row.checkpoint for row in voter_rows.values()), default=0)
        query = SinceQuery(since=since, first=self.config.snapshot_page_size)
        votes = await fetcher.fetch_votes(handler, voters, query)
        written = self._upsert_votes(votes)

        by_voter: Dict[str, List[VoteRecord]] = {v: [] for v in voters}
        for vote in votes:
            by_voter.setdefault(vote.voter_address, []).append(vote)

        for voter, row in voter_rows.items():
            self.store.advance(
                handler.id,
                RefreshKind.SNAPSHOT_VOTES,
                advance_snapshot_vote_checkpoint(row.checkpoint, by_voter[voter]),
                voter=voter,
            )

        return {"since": since, "votes": len(votes), "written": written}

    # -------------------------------------------------------------------------
    # Upserts
    # -------------------------------------------------------------------------
    def _upsert_proposals(self, records: Sequence[ProposalRecord]) -> int:
        """Insert new proposals, update changed ones. Identical rows are not written."""
        written = 0
        for rec in records:
            existing = self.db.execute(
                select(Proposal).where(Proposal.external_id == rec.external_id, Proposal.dao_id == rec.dao_id)
            ).scalar_one_or_none()

            values = rec.model_dump(include={"dao_handler_id", *PROPOSAL_FIELDS})
            if existing is None:
                self.db.add(Proposal(external_id=rec.external_id, dao_id=rec.dao_id, **values))
                self.db.flush()
                written += 1
                continue

            if _apply_changes(existing, values, PROPOSAL_FIELDS):
                written += 1

        self.db.flush()
        return written

    def _upsert_votes(self, votes: Sequence[VoteRecord]) -> int:
        written = 0
        for vote in votes:
            if self.db.get(Voter, vote.voter_address) is None:
                self.db.add(Voter(address=vote.voter_address))
                self.db.flush()

            existing = self.db.execute(
                select(Vote).where(
                    Vote.voter_address == vote.voter_address,
                    Vote.dao_id == vote.dao_id,
                    Vote.proposal_external_id == vote.proposal_external_id,
                )
            ).scalar_one_or_none()

            values = vote.model_dump(include=set(VOTE_FIELDS))
            if existing is None:
                self.db.add(
                    Vote(
                        voter_address=vote.voter_address,
                        dao_id=vote.dao_id,
                        dao_handler_id=vote.dao_handler_id,
                        proposal_external_id=vote.proposal_external_id,
                        **values,
                    )
                )
                self.db.flush()
                written += 1
                continue

            if _apply_changes(existing, values, VOTE_FIELDS):
                written += 1

        self.db.flush()
        return written

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    def _load_handler(self, source_id: str, kind: RefreshKind) -> DaoHandler:
        handler = self.db.get(DaoHandler, source_id)
        if handler is None:
            raise UnsupportedSource(f"unknown source {source_id}")

        is_snapshot = HandlerType(handler.type) is HandlerType.SNAPSHOT
        if kind.is_chain == is_snapshot:
            raise UnsupportedSource(f"source {source_id} ({handler.type}) cannot serve {kind.value}")
        return handler

    def _chain_fetcher(self, handler: DaoHandler) -> ChainFetcher:
        fetcher = self.fetchers.for_handler(handler)
        if not isinstance(fetcher, ChainFetcher):
            raise UnsupportedSource(f"no chain fetcher for {handler.type}")
        return fetcher

    @staticmethod
    def _start_block(handler: DaoHandler) -> int:
        try:
            return int((handler.decoder or {}).get("startBlock") or 0)
        except (TypeError, ValueError):
            return 0


def _normalize(value: Any) -> Any:
    if isinstance(value, datetime):
        return ensure_utc(value)
    return value


def _apply_changes(row: Any, values: Dict[str, Any], fields: Tuple[str, ...]) -> bool:
    changed = False
    for name in fields:
        new = values.get(name)
        if _normalize(getattr(row, name)) != _normalize(new):
            setattr(row, name, new)
            changed = True
    return changed
