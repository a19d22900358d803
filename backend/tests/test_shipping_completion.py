import pytest

from coinswap import models
from coinswap.core.errors import Forbidden, InvalidState
from coinswap.services import trade_engine


def _accepted(db, world, caller):
    a, b = caller(world.a), caller(world.b)
    trade = trade_engine.initiate_trade(db=db, caller=a, coin_id=world.coin_x)
    offer = trade_engine.submit_offer(db=db, caller=a, trade_id=trade.id, offered_coin_id=world.coin_y)
    trade = trade_engine.accept_offer(db=db, caller=b, trade_id=trade.id, offer_id=offer.id)
    assert trade.status == "accepted"
    return trade.id, a, b


@pytest.mark.parametrize("order", [("a", "b"), ("b", "a")])
def test_completion_only_after_both_receipts(db_session, world, caller, order):
    trade_id, a, b = _accepted(db_session, world, caller)
    parties = {"a": a, "b": b}

    first = trade_engine.mark_received(db=db_session, caller=parties[order[0]], trade_id=trade_id)
    assert first.status == "accepted"

    second = trade_engine.mark_received(db=db_session, caller=parties[order[1]], trade_id=trade_id)
    assert second.status == "completed"
    assert second.shipping.initiator_received is True
    assert second.shipping.owner_received is True


def test_mark_received_twice_is_a_noop_for_that_side(db_session, world, caller):
    trade_id, a, b = _accepted(db_session, world, caller)

    first = trade_engine.mark_received(db=db_session, caller=a, trade_id=trade_id)
    stamp = first.shipping.initiator_received_at
    version = first.version

    again = trade_engine.mark_received(db=db_session, caller=a, trade_id=trade_id)
    assert again.status == "accepted"
    assert again.shipping.initiator_received_at == stamp
    assert again.shipping.owner_received is False
    assert again.version == version

    done = trade_engine.mark_received(db=db_session, caller=b, trade_id=trade_id)
    assert done.status == "completed"


def test_receipts_before_acceptance_complete_trade_on_accept(db_session, world, caller):
    a, b = caller(world.a), caller(world.b)
    trade = trade_engine.initiate_trade(db=db_session, caller=a, coin_id=world.coin_x)
    offer = trade_engine.submit_offer(db=db_session, caller=a, trade_id=trade.id)

    trade_engine.mark_received(db=db_session, caller=b, trade_id=trade.id)
    early = trade_engine.mark_received(db=db_session, caller=a, trade_id=trade.id)
    assert early.status == "countered"
    assert early.shipping.initiator_received and early.shipping.owner_received

    done = trade_engine.accept_offer(db=db_session, caller=b, trade_id=trade.id, offer_id=offer.id)
    assert done.status == "completed"
    assert done.offers[0].status == "accepted"

    again = trade_engine.mark_received(db=db_session, caller=a, trade_id=trade.id)
    assert again.status == "completed"
    assert again.version == done.version


def test_single_early_receipt_leaves_accepted_trade_open(db_session, world, caller):
    a, b = caller(world.a), caller(world.b)
    trade = trade_engine.initiate_trade(db=db_session, caller=a, coin_id=world.coin_x)
    offer = trade_engine.submit_offer(db=db_session, caller=a, trade_id=trade.id)
    trade_engine.mark_received(db=db_session, caller=a, trade_id=trade.id)

    accepted = trade_engine.accept_offer(db=db_session, caller=b, trade_id=trade.id, offer_id=offer.id)
    assert accepted.status == "accepted"

    done = trade_engine.mark_received(db=db_session, caller=b, trade_id=trade.id)
    assert done.status == "completed"


def test_receipts_on_disputed_trade_do_not_complete_it(db_session, world, caller):
    trade_id, a, b = _accepted(db_session, world, caller)
    trade_engine.file_report(db=db_session, caller=a, trade_id=trade_id, reason="No show")

    trade_engine.mark_received(db=db_session, caller=a, trade_id=trade_id)
    detail = trade_engine.mark_received(db=db_session, caller=b, trade_id=trade_id)
    assert detail.status == "disputed"
    assert detail.shipping.initiator_received and detail.shipping.owner_received


def test_mark_shipped_sets_only_caller_side(db_session, world, caller):
    trade_id, a, b = _accepted(db_session, world, caller)

    detail = trade_engine.mark_shipped(db=db_session, caller=a, trade_id=trade_id, tracking_number="123")
    assert detail.shipping.initiator_shipped is True
    assert detail.shipping.initiator_tracking_number == "123"
    assert detail.shipping.owner_shipped is False
    assert detail.shipping.owner_tracking_number is None
    first_stamp = detail.shipping.initiator_shipped_at

    detail = trade_engine.mark_shipped(db=db_session, caller=a, trade_id=trade_id, tracking_number="999")
    assert detail.shipping.initiator_tracking_number == "999"
    assert detail.shipping.initiator_shipped_at == first_stamp


def test_shipping_guards(db_session, world, caller):
    a, c = caller(world.a), caller(world.c)
    trade = trade_engine.initiate_trade(db=db_session, caller=a, coin_id=world.coin_x)

    with pytest.raises(InvalidState):
        trade_engine.mark_shipped(db=db_session, caller=a, trade_id=trade.id)
    with pytest.raises(Forbidden):
        trade_engine.mark_received(db=db_session, caller=c, trade_id=trade.id)

    db_session.expire_all()
    shipping = db_session.query(models.TradeShipping).filter_by(trade_id=trade.id).one()
    assert not shipping.initiator_shipped
    assert not shipping.owner_received
