"""Shared fixtures: in-memory SQLite, seeded DAOs and fake collaborators"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["DISPATCHER_ENABLED"] = "false"
os.environ.pop("SLACK_WEBHOOK_URL", None)

from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Dict, List, Optional, Sequence  # noqa: E402

import pytest  # noqa: E402

from govsync.core.config import settings  # noqa: E402
from govsync.core.db import SessionLocal, engine  # noqa: E402
from govsync.ingestion.base import ChainFetcher, FetchScope, ProposalFetcher  # noqa: E402
from govsync.models import Base, Dao, DaoHandler, HandlerType  # noqa: E402
from govsync.schemas.records import ProposalRecord, VoteRecord, VoteTally  # noqa: E402

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def sync_config():
    return settings.sync_config()


@pytest.fixture
def session_factory():
    """Fresh schema per test on the shared in-memory connection"""
    Base.metadata.create_all(engine)
    yield SessionLocal
    Base.metadata.drop_all(engine)


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def seeded(db):
    """One DAO with an on-chain (ENS-style) and an off-chain (Snapshot) handler"""
    db.add(Dao(id="ens", name="ENS", picture="https://example.org/ens.png"))
    db.add(
        DaoHandler(
            id="ens-chain",
            dao_id="ens",
            type=HandlerType.ENS_CHAIN,
            decoder={"address": "0x323a76393544d5ecca80cd6ef2a560c6a395b7e3", "proposalUrl": "https://x.org/p/", "startBlock": 100},
        )
    )
    db.add(DaoHandler(id="ens-snapshot", dao_id="ens", type=HandlerType.SNAPSHOT, decoder={"space": "ens.eth"}))
    db.commit()
    return db


def make_proposal(
    external_id: str,
    handler_id: str = "ens-chain",
    block: Optional[int] = None,
    created: datetime = NOW - timedelta(days=2),
    ends: datetime = NOW + timedelta(days=2),
    finalized: bool = False,
    **extra,
) -> ProposalRecord:
    return ProposalRecord(
        external_id=external_id,
        dao_id="ens",
        dao_handler_id=handler_id,
        name=extra.pop("name", f"Proposal {external_id}"),
        choices=extra.pop("choices", ["For", "Against", "Abstain"]),
        scores=extra.pop("scores", [0.0, 0.0, 0.0]),
        block_created=block,
        time_created=created,
        time_start=created,
        time_end=ends,
        url=f"https://x.org/p/{external_id}",
        finalized=finalized,
        **extra,
    )


class FakeChainFetcher(ChainFetcher):
    """Serves canned proposals / votes and records every window it is asked for"""

    name = "fake-chain"

    def __init__(self, head: int = 10_000, proposals=None, votes=None, error: Optional[Exception] = None):
        self.head = head
        self.proposals: List[ProposalRecord] = list(proposals or [])
        self.votes: List[VoteRecord] = list(votes or [])
        self.error = error
        self.windows: List[FetchScope] = []

    async def chain_head(self) -> int:
        return self.head

    async def resolve_timestamp(self, block: int):
        return None

    async def tally(self, handler, proposal_id, at_block=None) -> VoteTally:
        return VoteTally()

    async def fetch_proposals(self, handler, scope):
        self.windows.append(scope)
        if self.error:
            raise self.error
        return [p for p in self.proposals if p.block_created is None or scope.start <= p.block_created <= scope.end]

    async def fetch_votes(self, handler, voters: Sequence[str], scope):
        self.windows.append(scope)
        if self.error:
            raise self.error
        return [v for v in self.votes if v.voter_address in voters]


class FakeSnapshotFetcher(ProposalFetcher):
    name = "fake-snapshot"

    def __init__(self, proposals=None, votes=None, error: Optional[Exception] = None):
        self.proposals: List[ProposalRecord] = list(proposals or [])
        self.votes: List[VoteRecord] = list(votes or [])
        self.error = error
        self.queries: List[FetchScope] = []

    async def fetch_proposals(self, handler, scope):
        self.queries.append(scope)
        if self.error:
            raise self.error
        return [p for p in self.proposals if p.created >= scope.since]

    async def fetch_votes(self, handler, voters, scope):
        self.queries.append(scope)
        if self.error:
            raise self.error
        return [v for v in self.votes if v.voter_address in voters]


def registry_with(fetchers: Dict[HandlerType, ProposalFetcher]):
    from govsync.ingestion.registry import FetcherRegistry

    return FetcherRegistry(fetchers)
