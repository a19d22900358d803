"""init trade tables (users/coins replicas, trades and children, audit log)

Revision ID: 20261018_0001_init_trade_tables
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_0001_init_trade_tables"
down_revision = None
branch_labels = None
depends_on = None

_LIVE_TRADE_SQL = "status IN ('pending', 'countered', 'accepted')"

_TRADE_STATUS = sa.Enum(
    "pending",
    "countered",
    "accepted",
    "rejected",
    "completed",
    "cancelled",
    "disputed",
    name="tradestatus",
    native_enum=False,
)
_OFFER_STATUS = sa.Enum(
    "pending", "accepted", "rejected", "countered", name="offerstatus", native_enum=False
)
_REPORT_STATUS = sa.Enum(
    "pending", "in_review", "resolved", "dismissed", name="reportstatus", native_enum=False
)


def _timestamps(with_updated: bool = True) -> list:
    cols = [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]
    if with_updated:
        cols.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
        )
    return cols


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=128), nullable=True),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column(
            "role",
            sa.Enum("user", "moderator", "admin", name="userrole", native_enum=False),
            nullable=False,
            server_default="user",
        ),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "coins",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("owner_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("country", sa.String(length=100), nullable=True),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column(
            "trade_status",
            sa.Enum("not_for_trade", "open_to_trade", name="cointradestatus", native_enum=False),
            nullable=False,
            server_default="not_for_trade",
        ),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_coins_owner_id", "coins", ["owner_id"])

    op.create_table(
        "trades",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("initiator_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("coin_owner_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("coin_id", sa.String(length=36), sa.ForeignKey("coins.id"), nullable=False),
        sa.Column("status", _TRADE_STATUS, nullable=False, server_default="pending"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_offer_seq", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("initiator_id <> coin_owner_id", name="ck_trades_distinct_parties"),
    )
    op.create_index("ix_trades_initiator_id", "trades", ["initiator_id"])
    op.create_index("ix_trades_coin_owner_id", "trades", ["coin_owner_id"])
    op.create_index("ix_trades_coin_id", "trades", ["coin_id"])
    op.create_index("ix_trades_status", "trades", ["status"])
    op.create_index(
        "uq_trades_live_initiator_coin",
        "trades",
        ["initiator_id", "coin_id"],
        unique=True,
        sqlite_where=sa.text(_LIVE_TRADE_SQL),
        postgresql_where=sa.text(_LIVE_TRADE_SQL),
    )

    op.create_table(
        "trade_offers",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "trade_id", sa.String(length=36), sa.ForeignKey("trades.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("offerer_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "offered_coin_id",
            sa.String(length=36),
            sa.ForeignKey("coins.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("is_counter_offer", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("status", _OFFER_STATUS, nullable=False, server_default="pending"),
        *_timestamps(),
        sa.UniqueConstraint("trade_id", "sequence", name="uq_trade_offers_trade_seq"),
    )
    op.create_index("ix_trade_offers_trade_id", "trade_offers", ["trade_id"])

    op.create_table(
        "trade_messages",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "trade_id", sa.String(length=36), sa.ForeignKey("trades.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("sender_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_trade_messages_trade_id", "trade_messages", ["trade_id"])
    op.create_index("ix_trade_messages_created_at", "trade_messages", ["created_at"])

    op.create_table(
        "trade_shipping",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "trade_id", sa.String(length=36), sa.ForeignKey("trades.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("initiator_shipped", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("initiator_tracking_number", sa.String(length=100), nullable=True),
        sa.Column("initiator_shipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("initiator_received", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("initiator_received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("owner_shipped", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("owner_tracking_number", sa.String(length=100), nullable=True),
        sa.Column("owner_shipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("owner_received", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("owner_received_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("trade_id", name="uq_trade_shipping_trade_id"),
    )

    op.create_table(
        "trade_reports",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "trade_id", sa.String(length=36), sa.ForeignKey("trades.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("reporter_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reported_user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reason", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", _REPORT_STATUS, nullable=False, server_default="pending"),
        sa.Column("reviewed_by", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_trade_reports_trade_id", "trade_reports", ["trade_id"])
    op.create_index("ix_trade_reports_status", "trade_reports", ["status"])

    op.create_table(
        "trade_ratings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "trade_id", sa.String(length=36), sa.ForeignKey("trades.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("rater_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("rated_user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        *_timestamps(with_updated=False),
        sa.UniqueConstraint("trade_id", "rater_id", name="uq_trade_ratings_trade_rater"),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_trade_ratings_range"),
    )
    op.create_index("ix_trade_ratings_trade_id", "trade_ratings", ["trade_id"])
    op.create_index("ix_trade_ratings_rated_user_id", "trade_ratings", ["rated_user_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column(
            "trade_id", sa.String(length=36), sa.ForeignKey("trades.id", ondelete="CASCADE"), nullable=True
        ),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_trade_id", "audit_logs", ["trade_id"])
    op.create_index("ix_audit_logs_request_id", "audit_logs", ["request_id"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("trade_ratings")
    op.drop_table("trade_reports")
    op.drop_table("trade_shipping")
    op.drop_table("trade_messages")
    op.drop_table("trade_offers")
    op.drop_index("uq_trades_live_initiator_coin", table_name="trades")
    op.drop_table("trades")
    op.drop_table("coins")
    op.drop_table("users")
