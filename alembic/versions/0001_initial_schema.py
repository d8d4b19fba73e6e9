"""initial schema: daos, proposals, votes, sync checkpoints, notifications

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True)


def upgrade() -> None:
    op.create_table(
        "daos",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("picture", sa.String(300), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "dao_handlers",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("dao_id", sa.String(64), sa.ForeignKey("daos.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("decoder", JSON, nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_dao_handlers_dao_id", "dao_handlers", ["dao_id"])
    op.create_index("ix_dao_handlers_type", "dao_handlers", ["type"])

    op.create_table(
        "proposals",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("external_id", sa.String(200), nullable=False),
        sa.Column("dao_id", sa.String(64), sa.ForeignKey("daos.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "dao_handler_id", sa.String(64), sa.ForeignKey("dao_handlers.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("choices", JSON, nullable=False),
        sa.Column("scores", JSON, nullable=False),
        sa.Column("scores_total", sa.Float(), nullable=False),
        sa.Column("quorum", sa.Float(), nullable=False),
        sa.Column("state", sa.String(16), nullable=False),
        sa.Column("block_created", sa.BigInteger(), nullable=True),
        sa.Column("time_created", sa.DateTime(timezone=True), nullable=False),
        sa.Column("time_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("time_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("url", sa.String(500), nullable=False),
        sa.Column("visible", sa.Boolean(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_id", "dao_id", name="uq_proposals_external_id_dao_id"),
    )
    op.create_index("ix_proposals_dao_id", "proposals", ["dao_id"])
    op.create_index("ix_proposals_dao_handler_id", "proposals", ["dao_handler_id"])
    op.create_index("ix_proposals_state", "proposals", ["state"])
    op.create_index("ix_proposals_time_end", "proposals", ["time_end"])

    op.create_table(
        "voters",
        sa.Column("address", sa.String(64), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("address"),
    )

    op.create_table(
        "votes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("voter_address", sa.String(64), nullable=False),
        sa.Column("dao_id", sa.String(64), sa.ForeignKey("daos.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "dao_handler_id", sa.String(64), sa.ForeignKey("dao_handlers.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("proposal_external_id", sa.String(200), nullable=False),
        sa.Column("choice", JSON, nullable=True),
        sa.Column("voting_power", sa.Float(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("block_created", sa.BigInteger(), nullable=True),
        sa.Column("time_created", sa.DateTime(timezone=True), nullable=True),
        _timestamp("ingested_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("voter_address", "dao_id", "proposal_external_id", name="uq_votes_voter_dao_proposal"),
    )
    op.create_index("ix_votes_voter_address", "votes", ["voter_address"])

    op.create_table(
        "sync_checkpoints",
        sa.Column("source_id", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("voter_address", sa.String(64), nullable=False),
        sa.Column("checkpoint", sa.BigInteger(), nullable=False),
        sa.Column("rate", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("uptodate", sa.Boolean(), nullable=False),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False),
        sa.Column("last_refreshed_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("source_id", "kind", "voter_address"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("address", sa.String(64), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("discord_webhook", sa.String(500), nullable=True),
        sa.Column("slack_webhook", sa.String(500), nullable=True),
        sa.Column("telegram_chat_id", sa.String(64), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_address", "users", ["address"])

    op.create_table(
        "subscriptions",
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("dao_id", sa.String(64), sa.ForeignKey("daos.id", ondelete="CASCADE"), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "dao_id"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("proposal_id", sa.Uuid(), nullable=True),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("dispatch_state", sa.String(20), nullable=False),
        sa.Column("channel_message_ref", sa.String(200), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "proposal_id", "type", name="uq_notifications_user_proposal_type"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_proposal_id", "notifications", ["proposal_id"])
    op.create_index("ix_notifications_dispatch_state", "notifications", ["dispatch_state"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("subscriptions")
    op.drop_table("users")
    op.drop_table("sync_checkpoints")
    op.drop_table("votes")
    op.drop_table("voters")
    op.drop_table("proposals")
    op.drop_table("dao_handlers")
    op.drop_table("daos")
