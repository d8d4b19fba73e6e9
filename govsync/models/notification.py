"""Users, their subscriptions and the notification jobs driven by the dispatcher."""

import enum
import uuid

from sqlalchemy import DateTime, Enum, ForeignKey, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from govsync.models.base import Base


class Channel(str, enum.Enum):
    DISCORD = "discord"
    SLACK = "slack"
    TELEGRAM = "telegram"
    EMAIL = "email"


class NotificationType(str, enum.Enum):
    NEW_PROPOSAL_DISCORD = "new_proposal_discord"
    FIRST_REMINDER_DISCORD = "first_reminder_discord"
    SECOND_REMINDER_DISCORD = "second_reminder_discord"
    ENDED_PROPOSAL_DISCORD = "ended_proposal_discord"
    NEW_PROPOSAL_SLACK = "new_proposal_slack"
    ENDED_PROPOSAL_SLACK = "ended_proposal_slack"
    NEW_PROPOSAL_TELEGRAM = "new_proposal_telegram"
    FIRST_REMINDER_TELEGRAM = "first_reminder_telegram"
    SECOND_REMINDER_TELEGRAM = "second_reminder_telegram"
    ENDED_PROPOSAL_TELEGRAM = "ended_proposal_telegram"
    QUORUM_NOT_REACHED_EMAIL = "quorum_not_reached_email"
    BULLETIN_EMAIL = "bulletin_email"

    @property
    def channel(self) -> Channel:
        return Channel(self.value.rsplit("_", 1)[1])

    @property
    def is_ended(self) -> bool:
        return self.value.startswith("ended_proposal")

    @property
    def is_bulletin(self) -> bool:
        return self is NotificationType.BULLETIN_EMAIL


class DispatchState(str, enum.Enum):
    NOT_DISPATCHED = "not_dispatched"
    FIRST_RETRY = "first_retry"
    SECOND_RETRY = "second_retry"
    THIRD_RETRY = "third_retry"
    DISPATCHED = "dispatched"
    FAILED = "failed"
    DELETED = "deleted"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    address: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    discord_webhook: Mapped[str | None] = mapped_column(String(500), nullable=True)
    slack_webhook: Mapped[str | None] = mapped_column(String(500), nullable=True)
    telegram_chat_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class Subscription(Base):
    __tablename__ = "subscriptions"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    dao_id: Mapped[str] = mapped_column(ForeignKey("daos.id", ondelete="CASCADE"), primary_key=True)


class Notification(Base):
    """One delivery job per (user, proposal, type).

    ``proposal_id`` is kept as a plain column (no FK) so a job survives the
    removal of its proposal and can be moved to ``deleted`` by the dispatcher.
    """

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    proposal_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, native_enum=False, length=40, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )

    dispatch_state: Mapped[DispatchState] = mapped_column(
        Enum(DispatchState, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=DispatchState.NOT_DISPATCHED,
        index=True,
    )

    # Opaque handle of the delivered message (message id, Postmark id, ...)
    channel_message_ref: Mapped[str | None] = mapped_column(String(200), nullable=True)
    error_message: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "proposal_id", "type", name="uq_notifications_user_proposal_type"),
    )
