"""Trade lifecycle engine.

Every public function here is one action: it checks the caller and the
current state, then claims the trade row (see `trade_store.claim_trade`) and
writes its children inside a single transaction. Nothing is written when a
check fails.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from coinswap import models
from coinswap.core.errors import (
    Forbidden,
    InternalError,
    InvalidState,
    NotFound,
    TradeError,
    ValidationFailed,
)
from coinswap.models.domain import utcnow
from coinswap.schemas.trades import (
    MessageRead,
    OfferRead,
    RatingRead,
    ReportRead,
    TradeDetailRead,
    TradeListRead,
)
from coinswap.services import projections, trade_rules, trade_store
from coinswap.services.audit import audit_event
from coinswap.services.catalog import CoinCatalog, SqlCoinCatalog

logger = logging.getLogger("coinswap.trades")

ALL_TRADE_STATUSES = frozenset(models.TradeStatus)
MODERATOR_ROLES = frozenset({models.UserRole.moderator, models.UserRole.admin})


class Caller(Protocol):
    id: str
    role: models.UserRole


@contextmanager
def _transaction(
    db: Session,
    action: str,
    *,
    trade_id: Optional[str] = None,
    on_integrity_error: Optional[Callable[[], TradeError]] = None,
) -> Iterator[None]:
    try:
        yield
        db.commit()
    except TradeError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        if on_integrity_error is not None:
            raise on_integrity_error() from exc
        logger.exception("trade_storage_error", extra={"action": action, "trade_id": trade_id})
        raise InternalError("Could not persist the trade change") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("trade_storage_error", extra={"action": action, "trade_id": trade_id})
        raise InternalError("Could not persist the trade change") from exc


def _catalog(db: Session, catalog: Optional[CoinCatalog]) -> CoinCatalog:
    return catalog if catalog is not None else SqlCoinCatalog(db)


def _detail(db: Session, trade_id: str) -> TradeDetailRead:
    trade = trade_store.get_trade_or_404(db, trade_id, with_children=True)
    return projections.project_trade_detail(db, trade)


def _require(allowed: bool, message: str) -> None:
    if not allowed:
        raise Forbidden(message)


def _set_offers(
    db: Session,
    trade_id: str,
    status: models.OfferStatus,
    *,
    from_statuses: frozenset[models.OfferStatus] = frozenset({models.OfferStatus.pending}),
    exclude: Optional[str] = None,
) -> int:
    q = (
        db.query(models.TradeOffer)
        .filter(models.TradeOffer.trade_id == trade_id)
        .filter(models.TradeOffer.status.in_(from_statuses))
    )
    if exclude is not None:
        q = q.filter(models.TradeOffer.id != exclude)
    return int(q.update({"status": status, "updated_at": utcnow()}, synchronize_session=False) or 0)


# --- reads --------------------------------------------------------------------


def list_trades(
    *,
    db: Session,
    caller: Caller,
    status: Optional[models.TradeStatus] = None,
    role: Optional[str] = None,
) -> TradeListRead:
    trades = trade_store.list_trades_for_user(db, user_id=caller.id, status=status, role=role)
    return TradeListRead(items=projections.project_trades(db, trades))


def get_trade_detail(*, db: Session, caller: Caller, trade_id: str) -> TradeDetailRead:
    trade = trade_store.get_trade_or_404(db, trade_id, with_children=True)
    _require(trade_rules.can_view(trade, caller.id), "Caller is not a party to this trade")
    return projections.project_trade_detail(db, trade)


def list_reports(*, db: Session, caller: Caller, trade_id: str) -> list[ReportRead]:
    _require(caller.role in MODERATOR_ROLES, "Insufficient role")
    trade = trade_store.get_trade_or_404(db, trade_id)
    reports = (
        db.query(models.TradeReport)
        .filter(models.TradeReport.trade_id == trade.id)
        .order_by(models.TradeReport.created_at, models.TradeReport.id)
        .all()
    )
    return projections.project_reports(db, reports)


# --- actions ------------------------------------------------------------------


def initiate_trade(
    *,
    db: Session,
    caller: Caller,
    coin_id: str,
    catalog: Optional[CoinCatalog] = None,
    request_id: Optional[str] = None,
) -> TradeDetailRead:
    coin_id = str(coin_id)
    coin = _catalog(db, catalog).get_coin(coin_id)
    if coin is None:
        raise NotFound("Coin not found", coin_id=coin_id)
    if not coin.trade_eligible:
        raise InvalidState("Coin is not open to trade", coin_id=coin_id)
    if coin.owner_id == caller.id:
        raise ValidationFailed("You cannot start a trade for your own coin", coin_id=coin_id)

    existing = trade_store.find_live_trade(db, initiator_id=caller.id, coin_id=coin_id)
    if existing is not None:
        raise InvalidState(
            "You already have an active trade for this coin",
            existing_trade_id=existing.id,
        )

    def _duplicate() -> TradeError:
        live = trade_store.find_live_trade(db, initiator_id=caller.id, coin_id=coin_id)
        return InvalidState(
            "You already have an active trade for this coin",
            existing_trade_id=live.id if live is not None else None,
        )

    with _transaction(db, "trade.initiate", on_integrity_error=_duplicate):
        trade = trade_store.insert_trade(
            db, initiator_id=caller.id, coin_owner_id=coin.owner_id, coin_id=coin_id
        )
        trade_id = trade.id
        audit_event(
            "trade.initiated",
            caller.id,
            {"coin_id": coin_id, "coin_owner_id": coin.owner_id},
            db=db,
            trade_id=trade_id,
            request_id=request_id,
        )

    logger.info(
        "trade_initiated",
        extra={"trade_id": trade_id, "initiator_id": caller.id, "coin_id": coin_id},
    )
    return _detail(db, trade_id)


def submit_offer(
    *,
    db: Session,
    caller: Caller,
    trade_id: str,
    offered_coin_id: Optional[str] = None,
    message: Optional[str] = None,
    catalog: Optional[CoinCatalog] = None,
    request_id: Optional[str] = None,
) -> OfferRead:
    trade = trade_store.get_trade_or_404(db, trade_id)
    _require(trade_rules.can_submit_offer(trade, caller.id), "Caller is not a party to this trade")
    new_status = trade_rules.status_after_offer(trade.status)

    if offered_coin_id is not None:
        offered_coin_id = str(offered_coin_id)
        offered = _catalog(db, catalog).get_coin(offered_coin_id)
        if offered is None:
            raise NotFound("Offered coin not found", coin_id=offered_coin_id)
        if offered.owner_id != caller.id:
            raise Forbidden("You can only offer coins you own", coin_id=offered_coin_id)

    previous = trade_store.latest_offer(db, trade.id)
    counter = trade_rules.is_counter_offer(
        previous.offerer_id if previous is not None else None, caller.id
    )

    with _transaction(db, "trade.offer", trade_id=trade.id):
        trade_store.claim_trade(
            db=db,
            trade=trade,
            allowed_from=trade_rules.LIVE_STATUSES,
            to_status=new_status,
            updates={"last_offer_seq": models.Trade.last_offer_seq + 1},
            action="trade.offer",
        )
        offer = models.TradeOffer(
            trade_id=trade.id,
            offerer_id=caller.id,
            offered_coin_id=offered_coin_id,
            sequence=trade.last_offer_seq,
            is_counter_offer=counter,
            message=message,
            status=models.OfferStatus.pending,
        )
        db.add(offer)
        db.flush()
        offer_id = offer.id
        audit_event(
            "trade.offer_submitted",
            caller.id,
            {
                "offer_id": offer_id,
                "sequence": offer.sequence,
                "offered_coin_id": offered_coin_id,
                "is_counter_offer": counter,
                "trade_status": new_status.value,
            },
            db=db,
            trade_id=trade.id,
            request_id=request_id,
        )

    logger.info(
        "trade_offer_submitted",
        extra={"trade_id": trade_id, "offer_id": offer_id, "offerer_id": caller.id},
    )
    trade = trade_store.get_trade_or_404(db, trade_id, with_children=True)
    detail = projections.project_trade_detail(db, trade)
    return next(o for o in detail.offers if o.id == offer_id)


def _answer_offer(
    *,
    db: Session,
    caller: Caller,
    trade_id: str,
    offer_id: str,
    accept: bool,
    request_id: Optional[str],
) -> TradeDetailRead:
    trade = trade_store.get_trade_or_404(db, trade_id)
    _require(
        trade_rules.can_respond_to_offer(trade, caller.id),
        "Only the coin owner can respond to offers",
    )
    offer = trade_store.get_offer_in_trade(db, trade_id=trade.id, offer_id=offer_id)
    if offer is None:
        raise NotFound("Offer not found", offer_id=str(offer_id))

    if accept:
        to_status = trade_rules.status_after_accept(trade.status, offer.status)
        # Receipts recorded before acceptance complete the trade right away.
        to_status = trade_rules.status_after_receipt(
            to_status,
            initiator_received=bool(trade.shipping.initiator_received),
            owner_received=bool(trade.shipping.owner_received),
        )
    else:
        to_status = trade_rules.check_reject(trade.status, offer.status)

    action = "trade.offer_accepted" if accept else "trade.offer_rejected"
    auto_rejected = 0
    with _transaction(db, action, trade_id=trade.id):
        trade_store.claim_trade(
            db=db,
            trade=trade,
            allowed_from=trade_rules.LIVE_STATUSES,
            to_status=to_status if accept else None,
            action=action,
        )
        offer.status = models.OfferStatus.accepted if accept else models.OfferStatus.rejected
        if accept:
            # The previously agreed offer, if any, is superseded too.
            auto_rejected = _set_offers(
                db,
                trade.id,
                models.OfferStatus.rejected,
                from_statuses=frozenset({models.OfferStatus.pending, models.OfferStatus.accepted}),
                exclude=offer.id,
            )
        db.flush()
        audit_event(
            action,
            caller.id,
            {"offer_id": offer.id, "trade_status": to_status.value, "auto_rejected": auto_rejected},
            db=db,
            trade_id=trade.id,
            request_id=request_id,
        )

    logger.info(
        "trade_offer_answered",
        extra={"trade_id": trade_id, "offer_id": str(offer_id), "accepted": accept},
    )
    if to_status == models.TradeStatus.completed:
        logger.info("trade_completed", extra={"trade_id": trade_id})
    return _detail(db, trade_id)


def accept_offer(
    *, db: Session, caller: Caller, trade_id: str, offer_id: str, request_id: Optional[str] = None
) -> TradeDetailRead:
    return _answer_offer(
        db=db, caller=caller, trade_id=trade_id, offer_id=offer_id, accept=True, request_id=request_id
    )


def reject_offer(
    *, db: Session, caller: Caller, trade_id: str, offer_id: str, request_id: Optional[str] = None
) -> TradeDetailRead:
    return _answer_offer(
        db=db, caller=caller, trade_id=trade_id, offer_id=offer_id, accept=False, request_id=request_id
    )


def decline_trade(
    *, db: Session, caller: Caller, trade_id: str, request_id: Optional[str] = None
) -> TradeDetailRead:
    trade = trade_store.get_trade_or_404(db, trade_id)
    _require(trade_rules.can_decline(trade, caller.id), "Only the coin owner can decline a trade")
    to_status = trade_rules.status_after_decline(trade.status)

    with _transaction(db, "trade.declined", trade_id=trade.id):
        trade_store.claim_trade(
            db=db,
            trade=trade,
            allowed_from=trade_rules.NEGOTIABLE_STATUSES,
            to_status=to_status,
            action="trade.declined",
        )
        rejected = _set_offers(db, trade.id, models.OfferStatus.rejected)
        audit_event(
            "trade.declined",
            caller.id,
            {"auto_rejected": rejected},
            db=db,
            trade_id=trade.id,
            request_id=request_id,
        )

    logger.info("trade_declined", extra={"trade_id": trade_id, "owner_id": caller.id})
    return _detail(db, trade_id)


def send_message(
    *,
    db: Session,
    caller: Caller,
    trade_id: str,
    content: str,
    request_id: Optional[str] = None,
) -> MessageRead:
    trade = trade_store.get_trade_or_404(db, trade_id)
    _require(trade_rules.can_send_message(trade, caller.id), "Caller is not a party to this trade")
    if not content or not content.strip():
        raise ValidationFailed("Message content must not be empty")

    with _transaction(db, "trade.message", trade_id=trade.id):
        msg = models.TradeMessage(trade_id=trade.id, sender_id=caller.id, content=content)
        db.add(msg)
        db.flush()
        audit_event(
            "trade.message_sent",
            caller.id,
            {"message_id": msg.id, "length": len(content)},
            db=db,
            trade_id=trade.id,
            request_id=request_id,
        )
        message_id = msg.id

    logger.info("trade_message_sent", extra={"trade_id": trade_id, "message_id": message_id})
    saved = db.get(models.TradeMessage, message_id)
    return projections.project_messages(db, [saved])[0]


def mark_shipped(
    *,
    db: Session,
    caller: Caller,
    trade_id: str,
    tracking_number: Optional[str] = None,
    request_id: Optional[str] = None,
) -> TradeDetailRead:
    trade = trade_store.get_trade_or_404(db, trade_id)
    _require(trade_rules.can_update_shipping(trade, caller.id), "Caller is not a party to this trade")
    trade_rules.check_can_ship(trade.status)
    side = trade_rules.party_side(trade, caller.id)

    with _transaction(db, "trade.shipped", trade_id=trade.id):
        trade_store.claim_trade(
            db=db,
            trade=trade,
            allowed_from={models.TradeStatus.accepted},
            action="trade.shipped",
        )
        shipping = trade.shipping
        setattr(shipping, f"{side}_shipped", True)
        if getattr(shipping, f"{side}_shipped_at") is None:
            setattr(shipping, f"{side}_shipped_at", utcnow())
        if tracking_number:
            setattr(shipping, f"{side}_tracking_number", tracking_number)
        db.flush()
        audit_event(
            "trade.shipped",
            caller.id,
            {"side": side, "tracking_number": tracking_number},
            db=db,
            trade_id=trade.id,
            request_id=request_id,
        )

    logger.info("trade_shipped", extra={"trade_id": trade_id, "side": side})
    return _detail(db, trade_id)


def mark_received(
    *, db: Session, caller: Caller, trade_id: str, request_id: Optional[str] = None
) -> TradeDetailRead:
    trade = trade_store.get_trade_or_404(db, trade_id)
    _require(trade_rules.can_update_shipping(trade, caller.id), "Caller is not a party to this trade")
    side = trade_rules.party_side(trade, caller.id)

    shipping = trade.shipping
    already_received = bool(getattr(shipping, f"{side}_received"))
    to_status = trade_rules.status_after_receipt(
        trade.status,
        initiator_received=side == "initiator" or bool(shipping.initiator_received),
        owner_received=side == "owner" or bool(shipping.owner_received),
    )
    if already_received and to_status == trade.status:
        return _detail(db, trade_id)

    completes = to_status != trade.status
    with _transaction(db, "trade.received", trade_id=trade.id):
        trade_store.claim_trade(
            db=db,
            trade=trade,
            allowed_from=ALL_TRADE_STATUSES,
            to_status=to_status if completes else None,
            action="trade.received",
        )
        shipping = trade.shipping
        setattr(shipping, f"{side}_received", True)
        if getattr(shipping, f"{side}_received_at") is None:
            setattr(shipping, f"{side}_received_at", utcnow())
        db.flush()
        audit_event(
            "trade.received",
            caller.id,
            {"side": side, "completed": completes},
            db=db,
            trade_id=trade.id,
            request_id=request_id,
        )

    logger.info("trade_received", extra={"trade_id": trade_id, "side": side})
    if completes:
        logger.info("trade_completed", extra={"trade_id": trade_id})
    return _detail(db, trade_id)


def file_report(
    *,
    db: Session,
    caller: Caller,
    trade_id: str,
    reason: str,
    description: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ReportRead:
    trade = trade_store.get_trade_or_404(db, trade_id)
    _require(trade_rules.can_report(trade, caller.id), "Caller is not a party to this trade")
    to_status = trade_rules.status_after_report(trade.status)
    reported_user_id = trade_rules.other_party(trade, caller.id)
    previous_status = trade.status

    with _transaction(db, "trade.reported", trade_id=trade.id):
        trade_store.claim_trade(
            db=db,
            trade=trade,
            allowed_from=ALL_TRADE_STATUSES - {models.TradeStatus.completed},
            to_status=to_status,
            action="trade.reported",
        )
        report = models.TradeReport(
            trade_id=trade.id,
            reporter_id=caller.id,
            reported_user_id=reported_user_id,
            reason=reason,
            description=description,
            status=models.ReportStatus.pending,
        )
        db.add(report)
        db.flush()
        report_id = report.id
        audit_event(
            "trade.reported",
            caller.id,
            {
                "report_id": report_id,
                "reported_user_id": reported_user_id,
                "previous_status": previous_status.value,
            },
            db=db,
            trade_id=trade.id,
            request_id=request_id,
        )

    logger.info(
        "trade_reported",
        extra={"trade_id": trade_id, "report_id": report_id, "reporter_id": caller.id},
    )
    saved = db.get(models.TradeReport, report_id)
    return projections.project_reports(db, [saved])[0]


def review_report(
    *,
    db: Session,
    caller: Caller,
    trade_id: str,
    report_id: str,
    status: models.ReportStatus,
    review_notes: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ReportRead:
    _require(caller.role in MODERATOR_ROLES, "Insufficient role")
    trade = trade_store.get_trade_or_404(db, trade_id)
    report = (
        db.query(models.TradeReport)
        .filter(models.TradeReport.id == str(report_id))
        .filter(models.TradeReport.trade_id == trade.id)
        .first()
    )
    if report is None:
        raise NotFound("Report not found", report_id=str(report_id))
    current = report.status
    trade_rules.check_report_review(current, status)

    with _transaction(db, "trade.report_reviewed", trade_id=trade.id):
        rowcount = (
            db.query(models.TradeReport)
            .filter(models.TradeReport.id == report.id)
            .filter(models.TradeReport.status == current)
            .update(
                {
                    "status": status,
                    "reviewed_by": caller.id,
                    "review_notes": review_notes,
                    "updated_at": utcnow(),
                },
                synchronize_session=False,
            )
        )
        if rowcount != 1:
            raise InvalidState("Report was reviewed concurrently", report_id=report.id)
        audit_event(
            "trade.report_reviewed",
            caller.id,
            {"report_id": report.id, "from": current.value, "to": status.value},
            db=db,
            trade_id=trade.id,
            request_id=request_id,
        )

    logger.info(
        "trade_report_reviewed",
        extra={"trade_id": trade_id, "report_id": str(report_id), "report_status": status.value},
    )
    db.expire_all()
    saved = db.get(models.TradeReport, str(report_id))
    return projections.project_reports(db, [saved])[0]


def cancel_trade(
    *, db: Session, caller: Caller, trade_id: str, request_id: Optional[str] = None
) -> TradeDetailRead:
    trade = trade_store.get_trade_or_404(db, trade_id)
    to_status = trade_rules.status_after_cancel(trade, caller.id)
    previous_status = trade.status

    if caller.id == trade.initiator_id:
        allowed_from = trade_rules.LIVE_STATUSES
    else:
        allowed_from = frozenset({models.TradeStatus.accepted})

    with _transaction(db, "trade.cancelled", trade_id=trade.id):
        trade_store.claim_trade(
            db=db,
            trade=trade,
            allowed_from=allowed_from,
            to_status=to_status,
            action="trade.cancelled",
        )
        audit_event(
            "trade.cancelled",
            caller.id,
            {"previous_status": previous_status.value},
            db=db,
            trade_id=trade.id,
            request_id=request_id,
        )

    logger.info("trade_cancelled", extra={"trade_id": trade_id, "cancelled_by": caller.id})
    return _detail(db, trade_id)


def rate_trade(
    *,
    db: Session,
    caller: Caller,
    trade_id: str,
    rating: int,
    request_id: Optional[str] = None,
) -> RatingRead:
    trade = trade_store.get_trade_or_404(db, trade_id)
    _require(trade_rules.can_rate(trade, caller.id), "Caller is not a party to this trade")
    trade_rules.check_can_rate(trade.status)
    if not 1 <= int(rating) <= 5:
        raise ValidationFailed("Rating must be between 1 and 5")

    existing = (
        db.query(models.TradeRating)
        .filter(models.TradeRating.trade_id == trade.id)
        .filter(models.TradeRating.rater_id == caller.id)
        .first()
    )
    if existing is not None:
        raise InvalidState("You have already rated this trade", rating_id=existing.id)

    def _duplicate() -> TradeError:
        return InvalidState("You have already rated this trade")

    rated_user_id = trade_rules.other_party(trade, caller.id)
    with _transaction(db, "trade.rated", trade_id=trade.id, on_integrity_error=_duplicate):
        row = models.TradeRating(
            trade_id=trade.id,
            rater_id=caller.id,
            rated_user_id=rated_user_id,
            rating=int(rating),
        )
        db.add(row)
        db.flush()
        rating_id = row.id
        audit_event(
            "trade.rated",
            caller.id,
            {"rating_id": rating_id, "rated_user_id": rated_user_id, "rating": int(rating)},
            db=db,
            trade_id=trade.id,
            request_id=request_id,
        )

    logger.info("trade_rated", extra={"trade_id": trade_id, "rating_id": rating_id})
    return RatingRead.model_validate(db.get(models.TradeRating, rating_id))
