"""Abstract fetcher interface for proposal sources."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Union

from govsync.core.errors import UnsupportedSource
from govsync.ingestion.rpc import RPCClient
from govsync.models.dao import DaoHandler
from govsync.schemas.records import ProposalRecord, VoteRecord, VoteTally
from govsync.sync.timestamps import TimestampEstimator
from govsync.sync.window import ScanWindow


@dataclass(frozen=True)
class SinceQuery:
    """Off-chain scope: everything created at or after ``since`` (unix seconds), one page."""

    since: int
    first: int


FetchScope = Union[ScanWindow, SinceQuery]


class ProposalFetcher(ABC):
    """One implementation per contract family, plus one for the Snapshot hub.

    Every call must be safe to retry: fetchers read only, persistence is the
    caller's job.
    """

    name: str

    @abstractmethod
    async def fetch_proposals(self, handler: DaoHandler, scope: FetchScope) -> List[ProposalRecord]:
        """Proposals created inside ``scope``."""

    @abstractmethod
    async def fetch_votes(
        self, handler: DaoHandler, voters: Sequence[str], scope: FetchScope
    ) -> List[VoteRecord]:
        """Votes cast by ``voters`` inside ``scope``."""


class ChainFetcher(ProposalFetcher):
    """Shared plumbing for fetchers reading EVM governance contracts."""

    def __init__(self, rpc: RPCClient, estimator: TimestampEstimator):
        self.rpc = rpc
        self.estimator = estimator

    async def chain_head(self) -> int:
        return await self.rpc.block_number()

    async def resolve_timestamp(self, block: int) -> Optional[datetime]:
        return await self.estimator.resolve(block)

    @abstractmethod
    async def tally(self, handler: DaoHandler, proposal_id: int, at_block: Optional[int] = None) -> VoteTally:
        """Current for/against/abstain totals and quorum of one proposal."""

    @staticmethod
    def contract_address(handler: DaoHandler) -> str:
        address = (handler.decoder or {}).get("address")
        if not address:
            raise UnsupportedSource(f"handler {handler.id} has no contract address in its decoder")
        return address

    @staticmethod
    def proposal_url(handler: DaoHandler, external_id: str) -> str:
        return f"{(handler.decoder or {}).get('proposalUrl', '')}{external_id}"


class UnsupportedFetcher(ProposalFetcher):
    """Placeholder for handler kinds without a decoder; every call reports ``nok``."""

    def __init__(self, name: str):
        self.name = name

    async def fetch_proposals(self, handler: DaoHandler, scope: FetchScope) -> List[ProposalRecord]:
        raise UnsupportedSource(f"no proposal fetcher for {self.name}")

    async def fetch_votes(
        self, handler: DaoHandler, voters: Sequence[str], scope: FetchScope
    ) -> List[VoteRecord]:
        raise UnsupportedSource(f"no vote fetcher for {self.name}")
