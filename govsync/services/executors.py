"""Ways of running one refresh work item: in-process, or through a remote refresh service."""

from __future__ import annotations

from typing import Callable, Optional

import httpx
from sqlalchemy.orm import Session

from govsync.core.config import SyncConfig
from govsync.core.logging import get_logger
from govsync.ingestion.registry import FetcherRegistry
from govsync.services.refresh_service import RefreshService
from govsync.sync.queue import RefreshOutcome, WorkItem

log = get_logger("executors")


class LocalExecutor:
    """Refreshes in this process with a short-lived session per item."""

    def __init__(self, session_factory: Callable[[], Session], config: SyncConfig, fetchers: FetcherRegistry):
        self.session_factory = session_factory
        self.config = config
        self.fetchers = fetchers

    async def execute(self, item: WorkItem) -> RefreshOutcome:
        with self.session_factory() as db:
            service = RefreshService(db, self.config, self.fetchers)
            return await service.run(item.source_id, item.kind, item.voters)


class HttpExecutor:
    """Asks a remote ``POST /refresh/{kind}`` endpoint and reads ``ok`` / ``nok``.

    Any transport or protocol problem counts as ``nok`` for every voter in the item.
    """

    def __init__(self, base_url: str, timeout: float = 60.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def execute(self, item: WorkItem) -> RefreshOutcome:
        url = f"{self.base_url}/refresh/{item.kind.value}"
        payload = {"source_id": item.source_id}
        if item.kind.is_votes:
            payload["voters"] = list(item.voters)

        try:
            resp = await self._client.post(url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.warning(f"Remote refresh failed for {item.kind.value} {item.source_id}: {exc}")
            return RefreshOutcome.failure(item)

        ok = body.get("status") == "ok"
        voters = {
            entry["voter_address"].lower(): bool(entry.get("success"))
            for entry in body.get("voters") or []
            if entry.get("voter_address")
        }
        return RefreshOutcome(source_id=item.source_id, ok=ok, voters=voters)
