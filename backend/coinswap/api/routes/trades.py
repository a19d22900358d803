from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from coinswap import models
from coinswap.api.deps import get_current_user, get_request_id
from coinswap.database import get_db
from coinswap.schemas.trades import (
    MessageCreate,
    MessageRead,
    OfferCreate,
    OfferRead,
    RatingCreate,
    RatingRead,
    ReportCreate,
    ReportRead,
    ShipmentCreate,
    TradeDetailRead,
    TradeInitiate,
    TradeListRead,
    TradeRoleFilter,
    TradeStatusValue,
)
from coinswap.services import trade_engine
from coinswap.services.directory import CallerIdentity

router = APIRouter(prefix="/trades", tags=["trades"])

_DB_DEP = Depends(get_db)
_USER_DEP = Depends(get_current_user)
_REQUEST_ID_DEP = Depends(get_request_id)


@router.post("", response_model=TradeDetailRead, status_code=status.HTTP_201_CREATED)
def initiate_trade(
    payload: TradeInitiate,
    db: Session = _DB_DEP,
    user: CallerIdentity = _USER_DEP,
    request_id: str = _REQUEST_ID_DEP,
):
    return trade_engine.initiate_trade(
        db=db, caller=user, coin_id=str(payload.coin_id), request_id=request_id
    )


@router.get("", response_model=TradeListRead)
def list_trades(
    status_filter: TradeStatusValue | None = Query(None, alias="status"),
    role: TradeRoleFilter | None = Query(None),
    db: Session = _DB_DEP,
    user: CallerIdentity = _USER_DEP,
):
    return trade_engine.list_trades(
        db=db,
        caller=user,
        status=models.TradeStatus(status_filter) if status_filter else None,
        role=role,
    )


@router.get("/{trade_id}", response_model=TradeDetailRead)
def get_trade(
    trade_id: UUID,
    db: Session = _DB_DEP,
    user: CallerIdentity = _USER_DEP,
):
    return trade_engine.get_trade_detail(db=db, caller=user, trade_id=str(trade_id))


@router.post(
    "/{trade_id}/offers", response_model=OfferRead, status_code=status.HTTP_201_CREATED
)
def submit_offer(
    trade_id: UUID,
    payload: OfferCreate,
    db: Session = _DB_DEP,
    user: CallerIdentity = _USER_DEP,
    request_id: str = _REQUEST_ID_DEP,
):
    return trade_engine.submit_offer(
        db=db,
        caller=user,
        trade_id=str(trade_id),
        offered_coin_id=str(payload.offered_coin_id) if payload.offered_coin_id else None,
        message=payload.message,
        request_id=request_id,
    )


@router.post("/{trade_id}/offers/{offer_id}/accept", response_model=TradeDetailRead)
def accept_offer(
    trade_id: UUID,
    offer_id: UUID,
    db: Session = _DB_DEP,
    user: CallerIdentity = _USER_DEP,
    request_id: str = _REQUEST_ID_DEP,
):
    return trade_engine.accept_offer(
        db=db, caller=user, trade_id=str(trade_id), offer_id=str(offer_id), request_id=request_id
    )


@router.post("/{trade_id}/offers/{offer_id}/reject", response_model=TradeDetailRead)
def reject_offer(
    trade_id: UUID,
    offer_id: UUID,
    db: Session = _DB_DEP,
    user: CallerIdentity = _USER_DEP,
    request_id: str = _REQUEST_ID_DEP,
):
    return trade_engine.reject_offer(
        db=db, caller=user, trade_id=str(trade_id), offer_id=str(offer_id), request_id=request_id
    )


@router.post("/{trade_id}/decline", response_model=TradeDetailRead)
def decline_trade(
    trade_id: UUID,
    db: Session = _DB_DEP,
    user: CallerIdentity = _USER_DEP,
    request_id: str = _REQUEST_ID_DEP,
):
    return trade_engine.decline_trade(
        db=db, caller=user, trade_id=str(trade_id), request_id=request_id
    )


@router.post(
    "/{trade_id}/messages", response_model=MessageRead, status_code=status.HTTP_201_CREATED
)
def send_message(
    trade_id: UUID,
    payload: MessageCreate,
    db: Session = _DB_DEP,
    user: CallerIdentity = _USER_DEP,
    request_id: str = _REQUEST_ID_DEP,
):
    return trade_engine.send_message(
        db=db, caller=user, trade_id=str(trade_id), content=payload.content, request_id=request_id
    )


@router.post("/{trade_id}/shipping/shipped", response_model=TradeDetailRead)
def mark_shipped(
    trade_id: UUID,
    payload: ShipmentCreate | None = None,
    db: Session = _DB_DEP,
    user: CallerIdentity = _USER_DEP,
    request_id: str = _REQUEST_ID_DEP,
):
    return trade_engine.mark_shipped(
        db=db,
        caller=user,
        trade_id=str(trade_id),
        tracking_number=payload.tracking_number if payload else None,
        request_id=request_id,
    )


@router.post("/{trade_id}/shipping/received", response_model=TradeDetailRead)
def mark_received(
    trade_id: UUID,
    db: Session = _DB_DEP,
    user: CallerIdentity = _USER_DEP,
    request_id: str = _REQUEST_ID_DEP,
):
    return trade_engine.mark_received(
        db=db, caller=user, trade_id=str(trade_id), request_id=request_id
    )


@router.post(
    "/{trade_id}/reports", response_model=ReportRead, status_code=status.HTTP_201_CREATED
)
def file_report(
    trade_id: UUID,
    payload: ReportCreate,
    db: Session = _DB_DEP,
    user: CallerIdentity = _USER_DEP,
    request_id: str = _REQUEST_ID_DEP,
):
    return trade_engine.file_report(
        db=db,
        caller=user,
        trade_id=str(trade_id),
        reason=payload.reason,
        description=payload.description,
        request_id=request_id,
    )


@router.post("/{trade_id}/cancel", response_model=TradeDetailRead)
def cancel_trade(
    trade_id: UUID,
    db: Session = _DB_DEP,
    user: CallerIdentity = _USER_DEP,
    request_id: str = _REQUEST_ID_DEP,
):
    return trade_engine.cancel_trade(
        db=db, caller=user, trade_id=str(trade_id), request_id=request_id
    )


@router.post(
    "/{trade_id}/ratings", response_model=RatingRead, status_code=status.HTTP_201_CREATED
)
def rate_trade(
    trade_id: UUID,
    payload: RatingCreate,
    db: Session = _DB_DEP,
    user: CallerIdentity = _USER_DEP,
    request_id: str = _REQUEST_ID_DEP,
):
    return trade_engine.rate_trade(
        db=db, caller=user, trade_id=str(trade_id), rating=payload.rating, request_id=request_id
    )
