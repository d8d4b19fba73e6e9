"""Stats routes - Sync progress and delivery observability."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from govsync.api.deps import get_db, get_sync_config
from govsync.core.checkpoints import CheckpointStore
from govsync.core.config import RefreshKind, SyncConfig
from govsync.schemas.api import CheckpointOut, NotificationJobOut, StatsResponse
from govsync.services.notification_service import NotificationService

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("", response_model=StatsResponse)
def get_stats(
    request: Request,
    failed_limit: int = Query(50, ge=1, le=500, description="Number of failed notifications to return"),
    db: Session = Depends(get_db),
    config: SyncConfig = Depends(get_sync_config),
):
    """
    Overview of sync and delivery health.

    Shows every source checkpoint, sources stuck at the minimum rate,
    notifications that exhausted their retries and live scheduler queues.
    """
    store = CheckpointStore(db, config)
    notifications = NotificationService(db)
    scheduler = getattr(request.app.state, "scheduler", None)

    return StatsResponse(
        checkpoints=[CheckpointOut.model_validate(row) for row in store.sources()],
        stuck_sources=[CheckpointOut.model_validate(row) for row in store.stuck()],
        failed_notifications=[NotificationJobOut.model_validate(n) for n in notifications.failed(failed_limit)],
        notifications_by_state=notifications.counts_by_state(),
        scheduler=scheduler.stats() if scheduler is not None else None,
    )


@router.get("/checkpoints", response_model=list[CheckpointOut])
def get_checkpoints(
    kind: Optional[RefreshKind] = Query(None, description="Filter by refresh kind"),
    db: Session = Depends(get_db),
    config: SyncConfig = Depends(get_sync_config),
):
    """
    Get source-level sync checkpoints.

    Checkpoints track the last processed block (chain) or timestamp
    (snapshot) per source, enabling incremental sync.
    """
    store = CheckpointStore(db, config)
    return [CheckpointOut.model_validate(row) for row in store.sources(kind)]
