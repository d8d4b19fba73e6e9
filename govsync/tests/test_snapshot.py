"""Snapshot hub fetcher tests"""

import json

import httpx
import pytest

from govsync.core.errors import DecodeError, UpstreamRateLimited
from govsync.ingestion.base import SinceQuery
from govsync.ingestion.snapshot import SnapshotFetcher, map_state
from govsync.models import DaoHandler, HandlerType, ProposalState

PROPOSAL = {
    "id": "0xprop",
    "title": "Temperature check",
    "choices": ["Yes", "No"],
    "scores": [10.5, 2.0],
    "scores_total": 12.5,
    "scores_state": "final",
    "created": 1_700_000_000,
    "start": 1_700_000_000,
    "end": 1_700_600_000,
    "quorum": 5,
    "link": "https://snapshot.org/#/ens.eth/proposal/0xprop",
    "state": "closed",
    "flagged": False,
}


def handler():
    return DaoHandler(id="ens-snapshot", dao_id="ens", type=HandlerType.SNAPSHOT, decoder={"space": "ens.eth"})


def fetcher_with(handler_fn, api_key=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler_fn))
    return SnapshotFetcher("https://hub.test/graphql", api_key=api_key, client=client)


class TestSnapshotFetcher:
    """Test GraphQL paging and mapping"""

    @pytest.mark.asyncio
    async def test_fetch_proposals(self):
        seen = []

        def respond(request):
            seen.append(request)
            return httpx.Response(200, json={"data": {"proposals": [PROPOSAL]}})

        records = await fetcher_with(respond, api_key="key").fetch_proposals(handler(), SinceQuery(since=1_600_000_000, first=1000))

        assert seen[0].headers["x-api-key"] == "key"
        assert json.loads(seen[0].content)["variables"] == {"space": "ens.eth", "since": 1_600_000_000, "first": 1000}
        record = records[0]
        assert record.external_id == "0xprop"
        assert record.dao_handler_id == "ens-snapshot"
        assert record.state is ProposalState.EXECUTED
        assert record.finalized is True
        assert record.visible is True
        assert record.created == 1_700_000_000

    @pytest.mark.asyncio
    async def test_fetch_votes_lowercases_voter(self):
        vote = {"id": "v1", "voter": "0xABC", "created": 1_700_000_100, "choice": 1, "vp": 3.5, "reason": "", "proposal": {"id": "0xprop"}}
        fetcher = fetcher_with(lambda request: httpx.Response(200, json={"data": {"votes": [vote]}}))

        votes = await fetcher.fetch_votes(handler(), ["0xabc"], SinceQuery(since=0, first=1000))

        assert votes[0].voter_address == "0xabc"
        assert votes[0].proposal_external_id == "0xprop"
        assert votes[0].reason is None

    @pytest.mark.asyncio
    async def test_graphql_errors_are_decode_errors(self):
        fetcher = fetcher_with(lambda request: httpx.Response(200, json={"errors": [{"message": "bad query"}]}))
        with pytest.raises(DecodeError):
            await fetcher.fetch_proposals(handler(), SinceQuery(since=0, first=10))

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        fetcher = fetcher_with(lambda request: httpx.Response(429))
        with pytest.raises(UpstreamRateLimited):
            await fetcher.fetch_proposals(handler(), SinceQuery(since=0, first=10))

    @pytest.mark.asyncio
    async def test_malformed_proposal(self):
        fetcher = fetcher_with(lambda request: httpx.Response(200, json={"data": {"proposals": [{"id": "0xbad"}]}}))
        with pytest.raises(DecodeError):
            await fetcher.fetch_proposals(handler(), SinceQuery(since=0, first=10))

    def test_map_state(self):
        assert map_state("active", "pending") is ProposalState.ACTIVE
        assert map_state("closed", "pending") is ProposalState.HIDDEN
        assert map_state("weird", "") is ProposalState.UNKNOWN
