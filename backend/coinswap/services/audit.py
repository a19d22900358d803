import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from coinswap import models

logger = logging.getLogger("coinswap.audit")


def audit_event(
    action: str,
    user_id: Optional[str],
    payload: Dict[str, Any],
    *,
    db: Session,
    trade_id: str | None = None,
    request_id: str | None = None,
) -> models.AuditLog:
    """
    Stage an audit row in the caller's session.

    The row is flushed but not committed: it becomes durable together with the
    trade mutation it describes, and disappears with it on rollback.
    """
    log = models.AuditLog(
        action=action,
        user_id=user_id,
        trade_id=trade_id,
        payload_json=json.dumps(payload or {}, default=str, sort_keys=True),
        request_id=request_id,
    )
    db.add(log)
    db.flush()
    logger.info(
        "audit_event",
        extra={"action": action, "user_id": user_id, "trade_id": trade_id, "request_id": request_id},
    )
    return log
