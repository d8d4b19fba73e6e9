# Services package
from govsync.services.executors import HttpExecutor, LocalExecutor
from govsync.services.feedback import RefreshFeedback
from govsync.services.notification_service import NotificationService
from govsync.services.queue_builder import QueueBuilder
from govsync.services.refresh_service import RefreshService

__all__ = [
    "HttpExecutor",
    "LocalExecutor",
    "RefreshFeedback",
    "NotificationService",
    "QueueBuilder",
    "RefreshService",
]
