"""Notification routes - Trigger feed for delivery jobs."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from govsync.api.deps import get_db
from govsync.schemas.api import NotificationJobRequest, NotificationJobsResponse
from govsync.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post("/jobs", response_model=NotificationJobsResponse)
def enqueue_jobs(requests: list[NotificationJobRequest], db: Session = Depends(get_db)):
    """
    Enqueue notification jobs for the dispatcher.

    Idempotent on (user_id, proposal_id, type): repeating a request never
    creates a second job.
    """
    service = NotificationService(db)
    return NotificationJobsResponse(**service.enqueue(requests))
