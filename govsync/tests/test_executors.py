"""Refresh executor tests"""

import json

import httpx
import pytest

from conftest import FakeSnapshotFetcher, registry_with
from govsync.core.config import RefreshKind
from govsync.models import HandlerType
from govsync.services.executors import HttpExecutor, LocalExecutor
from govsync.sync.queue import WorkItem


def remote(handler):
    return HttpExecutor("https://worker.test/", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestHttpExecutor:
    """Test delegation to a remote refresh service"""

    @pytest.mark.asyncio
    async def test_proposal_refresh(self):
        seen = []

        def respond(request):
            seen.append(request)
            return httpx.Response(200, json={"source_id": "ens-chain", "status": "ok", "voters": None})

        outcome = await remote(respond).execute(WorkItem(source_id="ens-chain", kind=RefreshKind.CHAIN_PROPOSALS))

        assert outcome.ok is True
        assert seen[0].url.path == "/refresh/chain_proposals"
        assert json.loads(seen[0].content) == {"source_id": "ens-chain"}

    @pytest.mark.asyncio
    async def test_vote_refresh_reads_each_voter(self):
        body = {
            "source_id": "ens-snapshot",
            "status": "ok",
            "voters": [{"voter_address": "0xAAA", "success": True}, {"voter_address": "0xbbb", "success": False}],
        }
        item = WorkItem(source_id="ens-snapshot", kind=RefreshKind.SNAPSHOT_VOTES, voters=("0xaaa", "0xbbb"))

        outcome = await remote(lambda request: httpx.Response(200, json=body)).execute(item)

        assert outcome.voters == {"0xaaa": True, "0xbbb": False}

    @pytest.mark.asyncio
    async def test_nok_status(self):
        outcome = await remote(lambda request: httpx.Response(200, json={"status": "nok"})).execute(
            WorkItem(source_id="ens-chain", kind=RefreshKind.CHAIN_PROPOSALS)
        )
        assert outcome.ok is False

    @pytest.mark.asyncio
    async def test_server_error_is_nok_for_every_voter(self):
        item = WorkItem(source_id="ens-snapshot", kind=RefreshKind.SNAPSHOT_VOTES, voters=("0xaaa",))
        outcome = await remote(lambda request: httpx.Response(500)).execute(item)
        assert outcome.ok is False
        assert outcome.voters == {"0xaaa": False}


class TestLocalExecutor:
    """Test in-process refreshes"""

    @pytest.mark.asyncio
    async def test_runs_refresh_with_own_session(self, seeded, session_factory, sync_config):
        executor = LocalExecutor(session_factory, sync_config, registry_with({HandlerType.SNAPSHOT: FakeSnapshotFetcher()}))
        outcome = await executor.execute(WorkItem(source_id="ens-snapshot", kind=RefreshKind.SNAPSHOT_PROPOSALS))
        assert outcome.ok is True
