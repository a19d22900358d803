from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from coinswap import models
from coinswap.api.deps import get_request_id, require_roles
from coinswap.database import get_db
from coinswap.schemas.trades import ReportListRead, ReportRead, ReportReview
from coinswap.services import trade_engine
from coinswap.services.directory import CallerIdentity

# Moderation endpoints share the /trades prefix with the party-facing routes.
router = APIRouter(prefix="/trades", tags=["moderation"])

_DB_DEP = Depends(get_db)
_MODERATOR_DEP = Depends(require_roles(models.UserRole.moderator))


@router.get("/{trade_id}/reports", response_model=ReportListRead)
def list_reports(
    trade_id: UUID,
    db: Session = _DB_DEP,
    user: CallerIdentity = _MODERATOR_DEP,
):
    items = trade_engine.list_reports(db=db, caller=user, trade_id=str(trade_id))
    return ReportListRead(items=items)


@router.patch("/{trade_id}/reports/{report_id}", response_model=ReportRead)
def review_report(
    trade_id: UUID,
    report_id: UUID,
    payload: ReportReview,
    db: Session = _DB_DEP,
    user: CallerIdentity = _MODERATOR_DEP,
    request_id: str = Depends(get_request_id),
):
    return trade_engine.review_report(
        db=db,
        caller=user,
        trade_id=str(trade_id),
        report_id=str(report_id),
        status=models.ReportStatus(payload.status),
        review_notes=payload.review_notes,
        request_id=request_id,
    )
