import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from govsync.models.notification import DispatchState, NotificationType


class RefreshRequest(BaseModel):
    source_id: str
    voters: list[str] = Field(default_factory=list)


class VoterResult(BaseModel):
    voter_address: str
    success: bool


class RefreshResponse(BaseModel):
    source_id: str
    status: Literal["ok", "nok"]
    voters: list[VoterResult] | None = None


class NotificationJobRequest(BaseModel):
    user_id: str
    proposal_id: Optional[uuid.UUID] = None
    type: NotificationType


class NotificationJobOut(BaseModel):
    id: uuid.UUID
    user_id: str
    proposal_id: Optional[uuid.UUID] = None
    type: NotificationType
    dispatch_state: DispatchState
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class NotificationJobsResponse(BaseModel):
    created: int
    existing: int


class HealthResponse(BaseModel):
    database: str
    scheduler: str
    dispatcher: str
    stuck_sources: int = 0
    pending_notifications: int = 0


class CheckpointOut(BaseModel):
    source_id: str
    kind: str
    voter_address: str
    checkpoint: int
    rate: int
    status: str
    uptodate: bool
    consecutive_failures: int
    last_refreshed_at: datetime | None = None

    class Config:
        from_attributes = True


class StatsResponse(BaseModel):
    checkpoints: list[CheckpointOut]
    stuck_sources: list[CheckpointOut]
    failed_notifications: list[NotificationJobOut]
    notifications_by_state: dict[str, int]
    scheduler: dict | None = None
