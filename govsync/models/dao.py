"""DAOs and their data-origin handlers (one handler = one sync source)."""

import enum

from sqlalchemy import DateTime, Enum, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from govsync.models.base import Base, JSONType


class HandlerType(str, enum.Enum):
    """Tag selecting the fetcher implementation for a source."""

    AAVE_CHAIN = "aave_chain"
    COMPOUND_CHAIN = "compound_chain"
    UNISWAP_CHAIN = "uniswap_chain"
    ENS_CHAIN = "ens_chain"
    GITCOIN_CHAIN = "gitcoin_chain"
    HOP_CHAIN = "hop_chain"
    DYDX_CHAIN = "dydx_chain"
    MAKER_EXECUTIVE = "maker_executive"
    MAKER_POLL = "maker_poll"
    MAKER_POLL_ARBITRUM = "maker_poll_arbitrum"
    SNAPSHOT = "snapshot"

    @property
    def is_chain(self) -> bool:
        return self is not HandlerType.SNAPSHOT


class Dao(Base):
    __tablename__ = "daos"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    picture: Mapped[str | None] = mapped_column(String(300), nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    handlers: Mapped[list["DaoHandler"]] = relationship(back_populates="dao")


class DaoHandler(Base):
    """A governance contract instance or a Snapshot space tracked for sync.

    ``decoder`` carries the per-family parameters:
        - chain handlers: ``address``, ``proposalUrl``, optional ``startBlock``
        - snapshot handlers: ``space``
    """

    __tablename__ = "dao_handlers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    dao_id: Mapped[str] = mapped_column(ForeignKey("daos.id", ondelete="CASCADE"), nullable=False, index=True)
    type: Mapped[HandlerType] = mapped_column(
        Enum(HandlerType, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )
    decoder: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    dao: Mapped[Dao] = relationship(back_populates="handlers")
