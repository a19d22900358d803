"""Trade state machine and per-action authorization.

Pure functions over trade-like objects: no session, no I/O. Every engine
operation asks one `can_*` predicate whether the caller may act, then one
`status_after_*` / `check_*` function whether the current status allows it.
The latter raise `InvalidState`; the engine raises `Forbidden` when a
predicate says no.
"""

from __future__ import annotations

from typing import Literal, Optional, Protocol

from coinswap.core.errors import Forbidden, InvalidState
from coinswap.models.domain import (
    LIVE_TRADE_STATUSES,
    OfferStatus,
    ReportStatus,
    TradeStatus,
)

PartySide = Literal["initiator", "owner"]

NEGOTIABLE_STATUSES = frozenset({TradeStatus.pending, TradeStatus.countered})
LIVE_STATUSES = frozenset(LIVE_TRADE_STATUSES)
TERMINAL_STATUSES = frozenset(
    {TradeStatus.completed, TradeStatus.cancelled, TradeStatus.rejected}
)

REPORT_TRANSITIONS: dict[ReportStatus, frozenset[ReportStatus]] = {
    ReportStatus.pending: frozenset(
        {ReportStatus.in_review, ReportStatus.resolved, ReportStatus.dismissed}
    ),
    ReportStatus.in_review: frozenset({ReportStatus.resolved, ReportStatus.dismissed}),
    ReportStatus.resolved: frozenset(),
    ReportStatus.dismissed: frozenset(),
}


class TradeLike(Protocol):
    initiator_id: str
    coin_owner_id: str
    status: TradeStatus


def is_party(trade: TradeLike, caller_id: str) -> bool:
    return caller_id in (trade.initiator_id, trade.coin_owner_id)


def party_side(trade: TradeLike, caller_id: str) -> PartySide:
    if caller_id == trade.initiator_id:
        return "initiator"
    if caller_id == trade.coin_owner_id:
        return "owner"
    raise Forbidden("Caller is not a party to this trade")


def other_party(trade: TradeLike, caller_id: str) -> str:
    if party_side(trade, caller_id) == "initiator":
        return trade.coin_owner_id
    return trade.initiator_id


# --- authorization predicates -------------------------------------------------


def can_view(trade: TradeLike, caller_id: str) -> bool:
    return is_party(trade, caller_id)


def can_submit_offer(trade: TradeLike, caller_id: str) -> bool:
    return is_party(trade, caller_id)


def can_respond_to_offer(trade: TradeLike, caller_id: str) -> bool:
    """Only the coin owner accepts or rejects, whatever the trade status."""
    return caller_id == trade.coin_owner_id


def can_decline(trade: TradeLike, caller_id: str) -> bool:
    return caller_id == trade.coin_owner_id


def can_send_message(trade: TradeLike, caller_id: str) -> bool:
    return is_party(trade, caller_id)


def can_update_shipping(trade: TradeLike, caller_id: str) -> bool:
    return is_party(trade, caller_id)


def can_report(trade: TradeLike, caller_id: str) -> bool:
    return is_party(trade, caller_id)


def can_rate(trade: TradeLike, caller_id: str) -> bool:
    return is_party(trade, caller_id)


def can_cancel(trade: TradeLike, caller_id: str) -> bool:
    if trade.status in NEGOTIABLE_STATUSES:
        return caller_id == trade.initiator_id
    if trade.status == TradeStatus.accepted:
        return is_party(trade, caller_id)
    return False


# --- transitions --------------------------------------------------------------


def status_after_offer(status: TradeStatus) -> TradeStatus:
    """Offers stack on any live trade; only the first one moves `pending` on."""
    if status in TERMINAL_STATUSES or status == TradeStatus.disputed:
        raise InvalidState(
            "Offers cannot be made on a closed or disputed trade",
            trade_status=status.value,
        )
    if status == TradeStatus.pending:
        return TradeStatus.countered
    return status


def is_counter_offer(previous_offerer_id: Optional[str], caller_id: str) -> bool:
    return previous_offerer_id is not None and previous_offerer_id != caller_id


def _check_offer_open(status: TradeStatus, offer_status: OfferStatus) -> None:
    if status not in LIVE_STATUSES:
        raise InvalidState(
            "Trade is no longer open for offers",
            trade_status=status.value,
        )
    if offer_status != OfferStatus.pending:
        raise InvalidState(
            "Offer has already been answered",
            offer_status=offer_status.value,
        )


def status_after_accept(status: TradeStatus, offer_status: OfferStatus) -> TradeStatus:
    """Accepting a stacked offer on an accepted trade replaces the agreed offer."""
    _check_offer_open(status, offer_status)
    return TradeStatus.accepted


def check_reject(status: TradeStatus, offer_status: OfferStatus) -> TradeStatus:
    """Rejecting one offer leaves the trade where it is."""
    _check_offer_open(status, offer_status)
    return status


def status_after_decline(status: TradeStatus) -> TradeStatus:
    if status not in NEGOTIABLE_STATUSES:
        raise InvalidState("Only a trade under negotiation can be declined", trade_status=status.value)
    return TradeStatus.rejected


def status_after_cancel(trade: TradeLike, caller_id: str) -> TradeStatus:
    if not is_party(trade, caller_id):
        raise Forbidden("Caller is not a party to this trade")
    if trade.status not in LIVE_STATUSES:
        raise InvalidState("Trade can no longer be cancelled", trade_status=trade.status.value)
    if not can_cancel(trade, caller_id):
        raise Forbidden("Only the initiator can cancel a trade before it is accepted")
    return TradeStatus.cancelled


def status_after_report(status: TradeStatus) -> TradeStatus:
    if status == TradeStatus.completed:
        raise InvalidState("Completed trades cannot be reported", trade_status=status.value)
    return TradeStatus.disputed


def check_can_ship(status: TradeStatus) -> None:
    if status != TradeStatus.accepted:
        raise InvalidState("Shipping requires an accepted trade", trade_status=status.value)


def status_after_receipt(
    status: TradeStatus, *, initiator_received: bool, owner_received: bool
) -> TradeStatus:
    """Completion is derived: both sides received on an accepted trade."""
    if initiator_received and owner_received and status == TradeStatus.accepted:
        return TradeStatus.completed
    return status


def check_can_rate(status: TradeStatus) -> None:
    if status != TradeStatus.completed:
        raise InvalidState("Only completed trades can be rated", trade_status=status.value)


def check_report_review(current: ReportStatus, target: ReportStatus) -> None:
    if target not in REPORT_TRANSITIONS[current]:
        raise InvalidState(
            "Report cannot move to the requested status",
            report_status=current.value,
            requested_status=target.value,
        )
