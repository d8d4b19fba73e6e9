"""Tracked voter addresses and the votes refreshed for them."""

import uuid

from sqlalchemy import BigInteger, DateTime, Float, ForeignKey, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from govsync.models.base import Base, JSONType


class Voter(Base):
    __tablename__ = "voters"

    # Stored lowercase
    address: Mapped[str] = mapped_column(String(64), primary_key=True)

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class Vote(Base):
    __tablename__ = "votes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    voter_address: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    dao_id: Mapped[str] = mapped_column(ForeignKey("daos.id", ondelete="CASCADE"), nullable=False)
    dao_handler_id: Mapped[str] = mapped_column(ForeignKey("dao_handlers.id", ondelete="CASCADE"), nullable=False)
    proposal_external_id: Mapped[str] = mapped_column(String(200), nullable=False)

    choice: Mapped[dict | list | int | None] = mapped_column(JSONType, nullable=True)
    voting_power: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    block_created: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    time_created: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    ingested_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("voter_address", "dao_id", "proposal_external_id", name="uq_votes_voter_dao_proposal"),
    )
