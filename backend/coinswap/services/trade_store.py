from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from coinswap import models
from coinswap.core.errors import ConflictRetry, InvalidState, NotFound
from coinswap.models.domain import utcnow

logger = logging.getLogger("coinswap.trades")

_AGGREGATE_FIELDS = ("status", "version", "last_offer_seq", "updated_at")


@dataclass(frozen=True)
class TransitionResult:
    updated: bool
    rowcount: int


def load_trade(db: Session, trade_id: str, *, with_children: bool = False) -> Optional[models.Trade]:
    q = db.query(models.Trade).filter(models.Trade.id == str(trade_id))
    if with_children:
        q = q.options(
            selectinload(models.Trade.offers),
            selectinload(models.Trade.messages),
            selectinload(models.Trade.shipping),
            selectinload(models.Trade.ratings),
            selectinload(models.Trade.coin),
        )
    return q.first()


def get_trade_or_404(db: Session, trade_id: str, *, with_children: bool = False) -> models.Trade:
    trade = load_trade(db, trade_id, with_children=with_children)
    if trade is None:
        raise NotFound("Trade not found", trade_id=str(trade_id))
    return trade


def find_live_trade(db: Session, *, initiator_id: str, coin_id: str) -> Optional[models.Trade]:
    return (
        db.query(models.Trade)
        .filter(models.Trade.initiator_id == str(initiator_id))
        .filter(models.Trade.coin_id == str(coin_id))
        .filter(models.Trade.status.in_(models.LIVE_TRADE_STATUSES))
        .first()
    )


def insert_trade(
    db: Session, *, initiator_id: str, coin_owner_id: str, coin_id: str
) -> models.Trade:
    """Stage a new pending trade and its empty shipping row. Caller commits."""

    trade = models.Trade(
        initiator_id=str(initiator_id),
        coin_owner_id=str(coin_owner_id),
        coin_id=str(coin_id),
        status=models.TradeStatus.pending,
        version=1,
        last_offer_seq=0,
    )
    trade.shipping = models.TradeShipping()
    db.add(trade)
    db.flush()
    return trade


def atomic_trade_update(
    *,
    db: Session,
    trade_id: str,
    expected_version: int,
    allowed_from: Iterable[models.TradeStatus],
    to_status: models.TradeStatus | None = None,
    updates: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    """Apply a trade mutation with an atomic DB guard.

    A single conditional UPDATE:

        UPDATE trades
        SET status = :to_status, version = version + 1, updated_at = :now, ...
        WHERE id = :trade_id AND version = :expected_version AND status IN (:allowed_from)

    Notes:
    - Callers control commit/rollback.
    - `to_status=None` keeps the current status but still claims the row
      (version bump), so concurrent child writes on the same trade serialize.
    """

    if now is None:
        now = utcnow()

    update_values: dict[str, Any] = {
        "version": models.Trade.version + 1,
        "updated_at": now,
    }
    if to_status is not None:
        update_values["status"] = to_status
    if updates:
        update_values.update(updates)

    rowcount = (
        db.query(models.Trade)
        .filter(models.Trade.id == str(trade_id))
        .filter(models.Trade.version == int(expected_version))
        .filter(models.Trade.status.in_(set(allowed_from)))
        .update(update_values, synchronize_session=False)
    )

    return TransitionResult(updated=rowcount > 0, rowcount=int(rowcount or 0))


def claim_trade(
    *,
    db: Session,
    trade: models.Trade,
    allowed_from: Iterable[models.TradeStatus],
    to_status: models.TradeStatus | None = None,
    updates: dict[str, Any] | None = None,
    action: str,
) -> None:
    """Run `atomic_trade_update` for an aggregate read in this session.

    On a lost race the transaction is rolled back and the trade re-read: if its
    status no longer satisfies the action the caller gets `InvalidState`,
    otherwise `ConflictRetry`.
    """

    allowed = set(allowed_from)
    trade_id = trade.id
    result = atomic_trade_update(
        db=db,
        trade_id=trade_id,
        expected_version=trade.version,
        allowed_from=allowed,
        to_status=to_status,
        updates=updates,
    )
    if result.updated:
        db.expire(trade, list(_AGGREGATE_FIELDS))
        return

    db.rollback()
    current = load_trade(db, trade_id)
    current_status = current.status if current is not None else None
    logger.info(
        "trade_write_conflict",
        extra={"trade_id": trade_id, "action": action, "current_status": getattr(current_status, "value", None)},
    )
    if current is None:
        raise NotFound("Trade not found", trade_id=trade_id)
    if current_status not in allowed:
        raise InvalidState(
            "Trade status changed before this action could be applied",
            trade_status=current_status.value,
        )
    raise ConflictRetry("Trade was modified concurrently; retry the request", trade_id=trade_id)


def get_offer_in_trade(db: Session, *, trade_id: str, offer_id: str) -> Optional[models.TradeOffer]:
    return (
        db.query(models.TradeOffer)
        .filter(models.TradeOffer.id == str(offer_id))
        .filter(models.TradeOffer.trade_id == str(trade_id))
        .first()
    )


def latest_offer(db: Session, trade_id: str) -> Optional[models.TradeOffer]:
    return (
        db.query(models.TradeOffer)
        .filter(models.TradeOffer.trade_id == str(trade_id))
        .order_by(models.TradeOffer.sequence.desc())
        .first()
    )


def list_trades_for_user(
    db: Session,
    *,
    user_id: str,
    status: models.TradeStatus | None = None,
    role: str | None = None,
) -> list[models.Trade]:
    q = db.query(models.Trade)
    if role == "initiator":
        q = q.filter(models.Trade.initiator_id == str(user_id))
    elif role == "owner":
        q = q.filter(models.Trade.coin_owner_id == str(user_id))
    else:
        q = q.filter(
            or_(
                models.Trade.initiator_id == str(user_id),
                models.Trade.coin_owner_id == str(user_id),
            )
        )
    if status is not None:
        q = q.filter(models.Trade.status == status)
    return (
        q.options(selectinload(models.Trade.coin))
        .order_by(models.Trade.updated_at.desc(), models.Trade.id)
        .all()
    )


def last_messages(db: Session, trade_ids: Iterable[str]) -> dict[str, models.TradeMessage]:
    ids = list({str(t) for t in trade_ids})
    if not ids:
        return {}
    rows = (
        db.query(models.TradeMessage)
        .filter(models.TradeMessage.trade_id.in_(ids))
        .order_by(models.TradeMessage.created_at, models.TradeMessage.id)
        .all()
    )
    latest: dict[str, models.TradeMessage] = {}
    for m in rows:
        latest[m.trade_id] = m
    return latest
