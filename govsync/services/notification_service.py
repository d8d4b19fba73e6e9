"""Notification job intake, idempotent on (user, proposal, type)."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from govsync.core.logging import get_logger
from govsync.models.notification import DispatchState, Notification
from govsync.notifications.ladder import PENDING_STATES
from govsync.schemas.api import NotificationJobRequest

log = get_logger("notification_service")


class NotificationService:
    """Creates delivery jobs for the dispatcher and reads them back.

    A proposal-bound job is created once per (user, proposal, type) no matter
    how often it is requested. Bulletin jobs carry no proposal; a new one is
    accepted only while no bulletin for that user is still pending.
    """

    def __init__(self, db: Session):
        self.db = db

    def enqueue(self, requests: Iterable[NotificationJobRequest]) -> Dict[str, int]:
        created = existing = 0
        seen = set()

        for request in requests:
            key = (request.user_id, request.proposal_id, request.type)
            if key in seen or self._find(request) is not None:
                existing += 1
                continue
            seen.add(key)

            self.db.add(
                Notification(
                    user_id=request.user_id,
                    proposal_id=request.proposal_id,
                    type=request.type,
                    dispatch_state=DispatchState.NOT_DISPATCHED,
                )
            )
            created += 1

        self.db.commit()
        if created:
            log.info(f"Enqueued {created} notification jobs ({existing} already known)")
        return {"created": created, "existing": existing}

    def _find(self, request: NotificationJobRequest) -> Optional[Notification]:
        stmt = select(Notification).where(
            Notification.user_id == request.user_id,
            Notification.type == request.type,
        )
        if request.proposal_id is None:
            stmt = stmt.where(
                Notification.proposal_id.is_(None),
                Notification.dispatch_state.in_(PENDING_STATES),
            )
        else:
            stmt = stmt.where(Notification.proposal_id == request.proposal_id)
        return self.db.execute(stmt.limit(1)).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------
    def failed(self, limit: int = 50) -> List[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.dispatch_state == DispatchState.FAILED)
            .order_by(Notification.updated_at.desc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def counts_by_state(self) -> Dict[str, int]:
        stmt = select(Notification.dispatch_state, func.count()).group_by(Notification.dispatch_state)
        return {state.value: count for state, count in self.db.execute(stmt).all()}
