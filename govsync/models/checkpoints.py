"""Powers incremental sync: per-source progress marker and adaptive rate."""

import enum

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from govsync.models.base import Base


class RefreshStatus(str, enum.Enum):
    NEW = "new"
    DONE = "done"


class SyncCheckpoint(Base):
    """One row per (source, kind) plus one per (source, kind, voter) for vote kinds.

    ``checkpoint`` is a block number for chain kinds and a unix timestamp for
    snapshot kinds. ``rate`` is only meaningful on the source-level row
    (``voter_address == ""``).
    """

    __tablename__ = "sync_checkpoints"

    source_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(String(32), primary_key=True)
    voter_address: Mapped[str] = mapped_column(String(64), primary_key=True, default="")

    checkpoint: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    rate: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[RefreshStatus] = mapped_column(
        Enum(RefreshStatus, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=RefreshStatus.NEW,
    )
    uptodate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_refreshed_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
