from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

TradeStatusValue = Literal[
    "pending", "countered", "accepted", "rejected", "completed", "cancelled", "disputed"
]
OfferStatusValue = Literal["pending", "accepted", "rejected", "countered"]
ReportStatusValue = Literal["pending", "in_review", "resolved", "dismissed"]
ReportReviewValue = Literal["in_review", "resolved", "dismissed"]
TradeRoleFilter = Literal["initiator", "owner"]


class _ReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- requests -----------------------------------------------------------------


class TradeInitiate(BaseModel):
    coin_id: UUID


class OfferCreate(BaseModel):
    offered_coin_id: UUID | None = None
    message: str | None = Field(None, max_length=1000)


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class ShipmentCreate(BaseModel):
    tracking_number: str | None = Field(None, max_length=100)


class ReportCreate(BaseModel):
    reason: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=1000)


class ReportReview(BaseModel):
    status: ReportReviewValue
    review_notes: str | None = Field(None, max_length=2000)


class RatingCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)


# --- read models --------------------------------------------------------------


class UserProfileRead(_ReadModel):
    id: str
    username: str
    display_name: str | None = None
    avatar_url: str | None = None


class CoinSummaryRead(_ReadModel):
    id: str
    title: str
    owner_id: str


class OfferRead(_ReadModel):
    id: str
    trade_id: str
    sequence: int
    offerer_id: str
    offerer: UserProfileRead | None = None
    offered_coin_id: str | None = None
    offered_coin: CoinSummaryRead | None = None
    is_counter_offer: bool
    message: str | None = None
    status: OfferStatusValue
    created_at: datetime
    updated_at: datetime


class MessageRead(_ReadModel):
    id: str
    trade_id: str
    sender_id: str
    sender: UserProfileRead | None = None
    content: str
    created_at: datetime


class ShippingRead(_ReadModel):
    initiator_shipped: bool
    initiator_tracking_number: str | None = None
    initiator_shipped_at: datetime | None = None
    initiator_received: bool
    initiator_received_at: datetime | None = None

    owner_shipped: bool
    owner_tracking_number: str | None = None
    owner_shipped_at: datetime | None = None
    owner_received: bool
    owner_received_at: datetime | None = None


class RatingRead(_ReadModel):
    id: str
    trade_id: str
    rater_id: str
    rated_user_id: str
    rating: int
    created_at: datetime


class TradeRead(_ReadModel):
    id: str
    initiator_id: str
    coin_owner_id: str
    coin_id: str
    status: TradeStatusValue
    version: int
    created_at: datetime
    updated_at: datetime

    initiator: UserProfileRead | None = None
    coin_owner: UserProfileRead | None = None
    coin: CoinSummaryRead | None = None
    last_message: MessageRead | None = None


class TradeListRead(BaseModel):
    items: list[TradeRead]


class TradeDetailRead(TradeRead):
    offers: list[OfferRead] = Field(default_factory=list)
    messages: list[MessageRead] = Field(default_factory=list)
    shipping: ShippingRead | None = None
    ratings: list[RatingRead] = Field(default_factory=list)


class ReportRead(_ReadModel):
    id: str
    trade_id: str
    reporter_id: str
    reporter: UserProfileRead | None = None
    reported_user_id: str
    reported_user: UserProfileRead | None = None
    reason: str
    description: str | None = None
    status: ReportStatusValue
    reviewed_by: str | None = None
    review_notes: str | None = None
    created_at: datetime
    updated_at: datetime


class ReportListRead(BaseModel):
    items: list[ReportRead]
