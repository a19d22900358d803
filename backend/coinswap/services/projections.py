"""Read models: trades with nested children and public profiles resolved."""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy.orm import Session

from coinswap import models
from coinswap.schemas.trades import (
    CoinSummaryRead,
    MessageRead,
    OfferRead,
    RatingRead,
    ReportRead,
    ShippingRead,
    TradeDetailRead,
    TradeRead,
    UserProfileRead,
)
from coinswap.services import directory
from coinswap.services.trade_store import last_messages

Profiles = dict[str, directory.PublicProfile]


def _profile(profiles: Profiles, user_id: Optional[str]) -> UserProfileRead | None:
    if not user_id:
        return None
    p = profiles.get(user_id)
    if p is None:
        return None
    return UserProfileRead(
        id=p.id, username=p.username, display_name=p.display_name, avatar_url=p.avatar_url
    )


def _coin(coin: Optional[models.Coin]) -> CoinSummaryRead | None:
    if coin is None:
        return None
    return CoinSummaryRead(id=coin.id, title=coin.title, owner_id=coin.owner_id)


def _message(m: models.TradeMessage, profiles: Profiles) -> MessageRead:
    return MessageRead(
        id=m.id,
        trade_id=m.trade_id,
        sender_id=m.sender_id,
        sender=_profile(profiles, m.sender_id),
        content=m.content,
        created_at=m.created_at,
    )


def _offer(o: models.TradeOffer, profiles: Profiles) -> OfferRead:
    return OfferRead(
        id=o.id,
        trade_id=o.trade_id,
        sequence=o.sequence,
        offerer_id=o.offerer_id,
        offerer=_profile(profiles, o.offerer_id),
        offered_coin_id=o.offered_coin_id,
        offered_coin=_coin(o.offered_coin),
        is_counter_offer=o.is_counter_offer,
        message=o.message,
        status=o.status.value,
        created_at=o.created_at,
        updated_at=o.updated_at,
    )


def _trade_fields(
    t: models.Trade, profiles: Profiles, last_message: Optional[models.TradeMessage]
) -> dict:
    return {
        "id": t.id,
        "initiator_id": t.initiator_id,
        "coin_owner_id": t.coin_owner_id,
        "coin_id": t.coin_id,
        "status": t.status.value,
        "version": t.version,
        "created_at": t.created_at,
        "updated_at": t.updated_at,
        "initiator": _profile(profiles, t.initiator_id),
        "coin_owner": _profile(profiles, t.coin_owner_id),
        "coin": _coin(t.coin),
        "last_message": _message(last_message, profiles) if last_message is not None else None,
    }


def project_trades(db: Session, trades: Iterable[models.Trade]) -> list[TradeRead]:
    trades = list(trades)
    profiles = directory.get_public_profiles(
        db, [uid for t in trades for uid in (t.initiator_id, t.coin_owner_id)]
    )
    latest = last_messages(db, [t.id for t in trades])
    if latest:
        profiles.update(
            directory.get_public_profiles(
                db, [m.sender_id for m in latest.values() if m.sender_id not in profiles]
            )
        )
    return [TradeRead(**_trade_fields(t, profiles, latest.get(t.id))) for t in trades]


def project_trade_detail(db: Session, trade: models.Trade) -> TradeDetailRead:
    offers = sorted(trade.offers, key=lambda o: o.sequence)
    messages = sorted(trade.messages, key=lambda m: (m.created_at, m.id))

    user_ids = {trade.initiator_id, trade.coin_owner_id}
    user_ids.update(o.offerer_id for o in offers)
    user_ids.update(m.sender_id for m in messages)
    profiles = directory.get_public_profiles(db, user_ids)

    fields = _trade_fields(trade, profiles, messages[-1] if messages else None)
    return TradeDetailRead(
        **fields,
        offers=[_offer(o, profiles) for o in offers],
        messages=[_message(m, profiles) for m in messages],
        shipping=ShippingRead.model_validate(trade.shipping) if trade.shipping is not None else None,
        ratings=[RatingRead.model_validate(r) for r in trade.ratings],
    )


def project_messages(db: Session, messages: Iterable[models.TradeMessage]) -> list[MessageRead]:
    messages = list(messages)
    profiles = directory.get_public_profiles(db, [m.sender_id for m in messages])
    return [_message(m, profiles) for m in messages]


def project_reports(db: Session, reports: Iterable[models.TradeReport]) -> list[ReportRead]:
    reports = list(reports)
    profiles = directory.get_public_profiles(
        db, [uid for r in reports for uid in (r.reporter_id, r.reported_user_id)]
    )
    return [
        ReportRead(
            id=r.id,
            trade_id=r.trade_id,
            reporter_id=r.reporter_id,
            reporter=_profile(profiles, r.reporter_id),
            reported_user_id=r.reported_user_id,
            reported_user=_profile(profiles, r.reported_user_id),
            reason=r.reason,
            description=r.description,
            status=r.status.value,
            reviewed_by=r.reviewed_by,
            review_notes=r.review_notes,
            created_at=r.created_at,
            updated_at=r.updated_at,
        )
        for r in reports
    ]
