"""Handler kind -> fetcher table."""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from govsync.core.config import SyncConfig
from govsync.ingestion.base import ProposalFetcher, UnsupportedFetcher
from govsync.ingestion.governor import AlphaFetcher, BravoFetcher, GovernorFetcher
from govsync.ingestion.rpc import RPCClient
from govsync.ingestion.snapshot import SnapshotFetcher
from govsync.models.dao import DaoHandler, HandlerType
from govsync.sync.timestamps import TimestampEstimator


class FetcherRegistry:
    """Builds one fetcher per handler kind up front and hands them out by tag."""

    def __init__(self, fetchers: Dict[HandlerType, ProposalFetcher], closers: Sequence[Any] = ()):
        self._fetchers = dict(fetchers)
        self._closers = list(closers)
        for kind in HandlerType:
            self._fetchers.setdefault(kind, UnsupportedFetcher(kind.value))

    @classmethod
    def build(
        cls,
        config: SyncConfig,
        rpc_url: str,
        snapshot_url: str,
        snapshot_api_key: Optional[str] = None,
    ) -> "FetcherRegistry":
        rpc = RPCClient(rpc_url, timeout=config.request_timeout_seconds)
        estimator = TimestampEstimator(rpc, seconds_per_block=config.seconds_per_block)

        governor = GovernorFetcher(rpc, estimator)
        bravo = BravoFetcher(rpc, estimator)
        alpha = AlphaFetcher(rpc, estimator)
        snapshot = SnapshotFetcher(snapshot_url, api_key=snapshot_api_key, timeout=config.request_timeout_seconds)

        return cls(
            {
                HandlerType.ENS_CHAIN: governor,
                HandlerType.HOP_CHAIN: governor,
                HandlerType.COMPOUND_CHAIN: bravo,
                HandlerType.UNISWAP_CHAIN: bravo,
                HandlerType.GITCOIN_CHAIN: alpha,
                HandlerType.SNAPSHOT: snapshot,
            },
            closers=[rpc, snapshot],
        )

    def for_handler(self, handler: DaoHandler) -> ProposalFetcher:
        return self._fetchers[HandlerType(handler.type)]

    async def aclose(self) -> None:
        for closer in self._closers:
            await closer.aclose()
