"""Health routes - Liveness of the database and the two background loops."""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import text
from sqlalchemy.orm import Session

from govsync.api.deps import get_db, get_sync_config
from govsync.core.checkpoints import CheckpointStore
from govsync.core.config import SyncConfig
from govsync.notifications.ladder import PENDING_STATES
from govsync.schemas.api import HealthResponse
from govsync.services.notification_service import NotificationService

router = APIRouter(prefix="/health", tags=["health"])


def _database_error(db: Session) -> Optional[str]:
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        return str(exc)
    return None


def _scheduler_status(request: Request) -> str:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return "disabled"
    return "running" if scheduler.running else "stopped"


def _dispatcher_status(request: Request) -> str:
    task = getattr(request.app.state, "dispatcher_task", None)
    if task is None:
        return "disabled"
    return "stopped" if task.done() else "running"


@router.get("", response_model=HealthResponse)
def health(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    config: SyncConfig = Depends(get_sync_config),
):
    """
    Health check endpoint for load balancer and Docker health checks.

    Reports database connectivity, whether the refresh scheduler and the
    notification dispatcher are alive, how many sources are stuck at their
    minimum rate and how many notifications are still waiting for delivery.
    Returns 503 if database is unreachable.
    """
    error = _database_error(db)
    if error is not None:
        response.status_code = 503
        return HealthResponse(
            database=f"down: {error}",
            scheduler=_scheduler_status(request),
            dispatcher=_dispatcher_status(request),
        )

    by_state = NotificationService(db).counts_by_state()
    return HealthResponse(
        database="ok",
        scheduler=_scheduler_status(request),
        dispatcher=_dispatcher_status(request),
        stuck_sources=len(CheckpointStore(db, config).stuck()),
        pending_notifications=sum(by_state.get(state.value, 0) for state in PENDING_STATES),
    )


@router.get("/ready")
def readiness(request: Request, response: Response, db: Session = Depends(get_db)):
    """
    Readiness probe.

    Not ready while the database is unreachable or an enabled scheduler has
    stopped its workers.
    """
    now = datetime.now(timezone.utc).isoformat()
    error = _database_error(db)
    if error is not None:
        response.status_code = 503
        return {"status": "not_ready", "error": error, "timestamp": now}
    if _scheduler_status(request) == "stopped":
        response.status_code = 503
        return {"status": "not_ready", "error": "scheduler stopped", "timestamp": now}
    return {"status": "ready", "timestamp": now}
