from govsync.models.base import Base
from govsync.models.dao import Dao, DaoHandler, HandlerType
from govsync.models.checkpoints import RefreshStatus, SyncCheckpoint
from govsync.models.proposal import Proposal, ProposalState
from govsync.models.vote import Vote, Voter
from govsync.models.notification import (
    Channel,
    DispatchState,
    Notification,
    NotificationType,
    Subscription,
    User,
)

__all__ = [
    "Base",
    "Dao",
    "DaoHandler",
    "HandlerType",
    "RefreshStatus",
    "SyncCheckpoint",
    "Proposal",
    "ProposalState",
    "Vote",
    "Voter",
    "Channel",
    "DispatchState",
    "Notification",
    "NotificationType",
    "Subscription",
    "User",
]
