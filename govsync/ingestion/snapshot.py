"""Snapshot hub (off-chain) fetcher over GraphQL."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import httpx

from govsync.core.errors import DecodeError, UpstreamRateLimited, UpstreamUnavailable
from govsync.core.logging import get_logger
from govsync.core.time_utils import from_unix
from govsync.ingestion.base import FetchScope, ProposalFetcher, SinceQuery
from govsync.models.dao import DaoHandler
from govsync.models.proposal import ProposalState
from govsync.schemas.records import ProposalRecord, VoteRecord

log = get_logger("ingestion.snapshot")

PROPOSALS_QUERY = """
query Proposals($space: String!, $since: Int!, $first: Int!) {
  proposals(
    first: $first,
    where: { space: $space, created_gte: $since },
    orderBy: "created",
    orderDirection: asc
  ) {
    id
    title
    choices
    scores
    scores_total
    scores_state
    created
    start
    end
    quorum
    link
    state
    flagged
  }
}
"""

VOTES_QUERY = """
query Votes($space: String!, $voters: [String]!, $since: Int!, $first: Int!) {
  votes(
    first: $first,
    where: { space: $space, voter_in: $voters, created_gte: $since },
    orderBy: "created",
    orderDirection: asc
  ) {
    id
    voter
    created
    choice
    vp
    reason
    proposal { id }
  }
}
"""


def map_state(state: str, scores_state: str) -> ProposalState:
    if state == "active":
        return ProposalState.ACTIVE
    if state == "pending":
        return ProposalState.PENDING
    if state == "closed":
        return ProposalState.EXECUTED if scores_state == "final" else ProposalState.HIDDEN
    return ProposalState.UNKNOWN


class SnapshotFetcher(ProposalFetcher):
    """Reads one Snapshot space per handler (``decoder["space"]``)."""

    name = "snapshot"

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_proposals(self, handler: DaoHandler, scope: FetchScope) -> List[ProposalRecord]:
        query = self._since(scope)
        data = await self._query(
            PROPOSALS_QUERY,
            {"space": self._space(handler), "since": query.since, "first": query.first},
        )
        items = data.get("proposals")
        if not isinstance(items, list):
            raise DecodeError("snapshot response has no proposals list")

        records = [self._to_record(handler, item) for item in items]
        log.info(f"handler={handler.id} since={query.since} proposals={len(records)}")
        return records

    async def fetch_votes(self, handler: DaoHandler, voters: Sequence[str], scope: FetchScope) -> List[VoteRecord]:
        query = self._since(scope)
        data = await self._query(
            VOTES_QUERY,
            {
                "space": self._space(handler),
                "voters": list(voters),
                "since": query.since,
                "first": query.first,
            },
        )
        items = data.get("votes")
        if not isinstance(items, list):
            raise DecodeError("snapshot response has no votes list")
        return [self._to_vote(handler, item) for item in items]

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------
    async def _query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"content-type": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key

        try:
            resp = await self._client.post(self.url, json={"query": query, "variables": variables}, headers=headers)
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailable("snapshot hub timed out") from exc
        except httpx.TransportError as exc:
            raise UpstreamUnavailable(f"snapshot hub transport error: {exc}") from exc

        if resp.status_code == 429:
            raise UpstreamRateLimited("snapshot hub rate limited")
        if resp.status_code >= 400:
            raise UpstreamUnavailable(f"snapshot hub answered HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as exc:
            raise DecodeError("snapshot hub returned non-JSON body") from exc

        if body.get("errors"):
            raise DecodeError(f"snapshot hub errors: {body['errors']}")
        data = body.get("data")
        if not isinstance(data, dict):
            raise DecodeError("snapshot hub response has no data")
        return data

    # -------------------------------------------------------------------------
    # Decoding
    # -------------------------------------------------------------------------
    @staticmethod
    def _since(scope: FetchScope) -> SinceQuery:
        if not isinstance(scope, SinceQuery):
            raise TypeError(f"snapshot fetcher pages by timestamp, got {scope!r}")
        return scope

    @staticmethod
    def _space(handler: DaoHandler) -> str:
        space = (handler.decoder or {}).get("space")
        if not space:
            raise DecodeError(f"handler {handler.id} has no snapshot space in its decoder")
        return space

    @staticmethod
    def _to_record(handler: DaoHandler, item: Dict[str, Any]) -> ProposalRecord:
        try:
            state = item.get("state") or ""
            scores_state = item.get("scores_state") or ""
            return ProposalRecord(
                external_id=item["id"],
                dao_id=handler.dao_id,
                dao_handler_id=handler.id,
                name=item.get("title") or "Untitled proposal",
                choices=item.get("choices") or [],
                scores=item.get("scores") or [],
                scores_total=item.get("scores_total") or 0.0,
                quorum=item.get("quorum") or 0.0,
                state=map_state(state, scores_state),
                time_created=from_unix(item["created"]),
                time_start=from_unix(item["start"]),
                time_end=from_unix(item["end"]),
                url=item.get("link") or "",
                finalized=state == "closed" and scores_state == "final",
                visible=not bool(item.get("flagged")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeError(f"bad snapshot proposal {item.get('id')!r}: {exc}") from exc

    @staticmethod
    def _to_vote(handler: DaoHandler, item: Dict[str, Any]) -> VoteRecord:
        try:
            return VoteRecord(
                voter_address=item["voter"].lower(),
                dao_id=handler.dao_id,
                dao_handler_id=handler.id,
                proposal_external_id=item["proposal"]["id"],
                choice=item.get("choice"),
                voting_power=item.get("vp") or 0.0,
                reason=item.get("reason") or None,
                time_created=from_unix(item["created"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeError(f"bad snapshot vote {item.get('id')!r}: {exc}") from exc
