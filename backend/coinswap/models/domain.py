# ruff: noqa: E501
import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coinswap.database import Base


def _uuid_str() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(PyEnum):
    user = "user"
    moderator = "moderator"
    admin = "admin"


class CoinTradeStatus(PyEnum):
    not_for_trade = "not_for_trade"
    open_to_trade = "open_to_trade"


class TradeStatus(PyEnum):
    pending = "pending"
    countered = "countered"
    accepted = "accepted"
    rejected = "rejected"
    completed = "completed"
    cancelled = "cancelled"
    disputed = "disputed"


class OfferStatus(PyEnum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    countered = "countered"


class ReportStatus(PyEnum):
    pending = "pending"
    in_review = "in_review"
    resolved = "resolved"
    dismissed = "dismissed"


# Statuses covered by the one-live-trade-per-(initiator, coin) rule.
LIVE_TRADE_STATUSES = (TradeStatus.pending, TradeStatus.countered, TradeStatus.accepted)
_LIVE_TRADE_SQL = "status IN ('pending', 'countered', 'accepted')"


class User(Base):
    """Read replica of the identity service's public user record."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, native_enum=False), default=UserRole.user, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


class Coin(Base):
    """Read replica of the coin catalog (ownership and trade eligibility only)."""

    __tablename__ = "coins"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    owner_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    trade_status: Mapped[CoinTradeStatus] = mapped_column(
        Enum(CoinTradeStatus, native_enum=False),
        default=CoinTradeStatus.not_for_trade,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


class Trade(Base):
    __tablename__ = "trades"
    __table_args__ = (
        CheckConstraint("initiator_id <> coin_owner_id", name="ck_trades_distinct_parties"),
        Index(
            "uq_trades_live_initiator_coin",
            "initiator_id",
            "coin_id",
            unique=True,
            sqlite_where=text(_LIVE_TRADE_SQL),
            postgresql_where=text(_LIVE_TRADE_SQL),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    initiator_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    coin_owner_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    coin_id: Mapped[str] = mapped_column(ForeignKey("coins.id"), nullable=False, index=True)
    status: Mapped[TradeStatus] = mapped_column(
        Enum(TradeStatus, native_enum=False),
        default=TradeStatus.pending,
        nullable=False,
        index=True,
    )

    # Bumped by every guarded mutation; see services/trade_store.py.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_offer_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    offers = relationship(
        "TradeOffer",
        back_populates="trade",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TradeOffer.sequence",
    )
    messages = relationship(
        "TradeMessage",
        back_populates="trade",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TradeMessage.created_at",
    )
    shipping = relationship(
        "TradeShipping",
        back_populates="trade",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    reports = relationship(
        "TradeReport",
        back_populates="trade",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TradeReport.created_at",
    )
    ratings = relationship(
        "TradeRating",
        back_populates="trade",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    coin = relationship("Coin", viewonly=True)


class TradeOffer(Base):
    __tablename__ = "trade_offers"
    __table_args__ = (UniqueConstraint("trade_id", "sequence", name="uq_trade_offers_trade_seq"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    trade_id: Mapped[str] = mapped_column(
        ForeignKey("trades.id", ondelete="CASCADE"), nullable=False, index=True
    )
    offerer_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    offered_coin_id: Mapped[str | None] = mapped_column(
        ForeignKey("coins.id", ondelete="SET NULL"), nullable=True
    )
    # 1-based position in the trade's negotiation history.
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    is_counter_offer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[OfferStatus] = mapped_column(
        Enum(OfferStatus, native_enum=False), default=OfferStatus.pending, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    trade = relationship("Trade", back_populates="offers")
    offered_coin = relationship("Coin", viewonly=True)


class TradeMessage(Base):
    __tablename__ = "trade_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    trade_id: Mapped[str] = mapped_column(
        ForeignKey("trades.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True
    )

    trade = relationship("Trade", back_populates="messages")


class TradeShipping(Base):
    __tablename__ = "trade_shipping"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    trade_id: Mapped[str] = mapped_column(
        ForeignKey("trades.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    initiator_shipped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    initiator_tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    initiator_shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    initiator_received: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    initiator_received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    owner_shipped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    owner_tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    owner_shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    owner_received: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    owner_received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    trade = relationship("Trade", back_populates="shipping")


class TradeReport(Base):
    __tablename__ = "trade_reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    trade_id: Mapped[str] = mapped_column(
        ForeignKey("trades.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reporter_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    reported_user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    reason: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ReportStatus] = mapped_column(
        Enum(ReportStatus, native_enum=False), default=ReportStatus.pending, nullable=False, index=True
    )
    reviewed_by: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    trade = relationship("Trade", back_populates="reports")


class TradeRating(Base):
    __tablename__ = "trade_ratings"
    __table_args__ = (
        UniqueConstraint("trade_id", "rater_id", name="uq_trade_ratings_trade_rater"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_trade_ratings_range"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    trade_id: Mapped[str] = mapped_column(
        ForeignKey("trades.id", ondelete="CASCADE"), nullable=False, index=True
    )
    rater_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    rated_user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    trade = relationship("Trade", back_populates="ratings")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    trade_id: Mapped[str | None] = mapped_column(
        ForeignKey("trades.id", ondelete="CASCADE"), nullable=True, index=True
    )
    payload_json: Mapped[str | None] = mapped_column(Text)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
