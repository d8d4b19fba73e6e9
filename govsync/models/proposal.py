"""Canonical proposal table, upserted by (external_id, dao_id)."""

import enum
import uuid

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, Float, ForeignKey, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from govsync.models.base import Base, JSONType


class ProposalState(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELED = "canceled"
    DEFEATED = "defeated"
    SUCCEEDED = "succeeded"
    QUEUED = "queued"
    EXPIRED = "expired"
    EXECUTED = "executed"
    HIDDEN = "hidden"
    UNKNOWN = "unknown"


class Proposal(Base):
    __tablename__ = "proposals"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    external_id: Mapped[str] = mapped_column(String(200), nullable=False)
    dao_id: Mapped[str] = mapped_column(ForeignKey("daos.id", ondelete="CASCADE"), nullable=False, index=True)
    dao_handler_id: Mapped[str] = mapped_column(
        ForeignKey("dao_handlers.id", ondelete="CASCADE"), nullable=False, index=True
    )

    name: Mapped[str] = mapped_column(String(500), nullable=False)
    choices: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    scores: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    scores_total: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    quorum: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    state: Mapped[ProposalState] = mapped_column(
        Enum(ProposalState, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ProposalState.UNKNOWN,
        index=True,
    )

    block_created: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    time_created: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    time_start: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    time_end: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    url: Mapped[str] = mapped_column(String(500), nullable=False)
    visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (UniqueConstraint("external_id", "dao_id", name="uq_proposals_external_id_dao_id"),)
