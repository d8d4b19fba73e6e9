"""Refresh routes - Run one refresh for a source on demand or for a remote scheduler."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from govsync.api.deps import get_db, get_fetchers, get_sync_config
from govsync.core.config import RefreshKind, SyncConfig
from govsync.core.logging import get_logger
from govsync.ingestion.registry import FetcherRegistry
from govsync.schemas.api import RefreshRequest, RefreshResponse, VoterResult
from govsync.services.refresh_service import RefreshService

router = APIRouter(prefix="/refresh", tags=["refresh"])
log = get_logger("refresh_routes")


@router.post("/{kind}", response_model=RefreshResponse)
async def refresh(
    kind: RefreshKind,
    request: RefreshRequest,
    db: Session = Depends(get_db),
    config: SyncConfig = Depends(get_sync_config),
    fetchers: FetcherRegistry = Depends(get_fetchers),
):
    """
    Run a single refresh attempt for one source.

    - chain_proposals / snapshot_proposals: `{source_id}`
    - chain_votes / snapshot_votes: `{source_id, voters}`

    Always answers 200; a failed attempt is reported as `status: nok` so the
    caller can feed it to its rate controller.
    """
    log.info(f"Refresh requested: {kind.value} {request.source_id}")

    service = RefreshService(db, config, fetchers)
    voters = request.voters if kind.is_votes else ()
    outcome = await service.run(request.source_id, kind, voters)

    return RefreshResponse(
        source_id=outcome.source_id,
        status="ok" if outcome.ok else "nok",
        voters=[VoterResult(voter_address=v, success=ok) for v, ok in outcome.voters.items()]
        if kind.is_votes
        else None,
    )
