import uuid

from coinswap import models


def _initiate(client, as_user, world):
    as_user(world.a)
    r = client.post("/api/trades", json={"coin_id": world.coin_x})
    assert r.status_code == 201, r.text
    return r.json()


def _accepted_trade(client, as_user, world):
    trade = _initiate(client, as_user, world)
    r = client.post(
        f"/api/trades/{trade['id']}/offers",
        json={"offered_coin_id": world.coin_y, "message": "swap?"},
    )
    assert r.status_code == 201, r.text
    offer = r.json()

    as_user(world.b)
    r = client.post(f"/api/trades/{trade['id']}/offers/{offer['id']}/accept")
    assert r.status_code == 200, r.text
    return r.json(), offer


def test_initiate_creates_pending_trade_with_empty_shipping(client, as_user, world, db_session):
    trade = _initiate(client, as_user, world)

    assert trade["status"] == "pending"
    assert trade["initiator_id"] == world.a
    assert trade["coin_owner_id"] == world.b
    assert trade["coin_id"] == world.coin_x
    assert trade["initiator"]["username"] == "alice"
    assert trade["coin_owner"]["display_name"] == "Bob"
    assert trade["coin"]["title"] == "1921 Morgan Dollar"

    shipping = trade["shipping"]
    assert shipping is not None
    assert shipping["initiator_shipped"] is False
    assert shipping["owner_shipped"] is False
    assert shipping["initiator_received"] is False
    assert shipping["owner_received"] is False

    assert db_session.query(models.TradeShipping).filter_by(trade_id=trade["id"]).count() == 1
    audit = db_session.query(models.AuditLog).filter_by(trade_id=trade["id"]).all()
    assert [a.action for a in audit] == ["trade.initiated"]


def test_initiate_second_live_trade_for_same_coin_is_rejected(client, as_user, world):
    trade = _initiate(client, as_user, world)

    r = client.post("/api/trades", json={"coin_id": world.coin_x})
    assert r.status_code == 409
    body = r.json()
    assert body["code"] == "invalid_state"
    assert body["existing_trade_id"] == trade["id"]
    assert body["request_id"]


def test_initiate_allowed_again_after_cancel(client, as_user, world):
    trade = _initiate(client, as_user, world)
    r = client.post(f"/api/trades/{trade['id']}/cancel")
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"

    r = client.post("/api/trades", json={"coin_id": world.coin_x})
    assert r.status_code == 201
    assert r.json()["id"] != trade["id"]


def test_initiate_error_kinds(client, as_user, world):
    as_user(world.a)

    r = client.post("/api/trades", json={"coin_id": str(uuid.uuid4())})
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"

    as_user(world.b)
    r = client.post("/api/trades", json={"coin_id": world.coin_z})
    assert r.status_code == 409

    r = client.post("/api/trades", json={"coin_id": world.coin_x})
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"

    as_user(world.a)
    r = client.post("/api/trades", json={"coin_id": world.coin_z})
    assert r.status_code == 409
    assert r.json()["code"] == "invalid_state"

    r = client.post("/api/trades", json={"coin_id": "not-a-uuid"})
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"


def test_offer_flips_pending_to_countered(client, as_user, world):
    trade = _initiate(client, as_user, world)

    r = client.post(
        f"/api/trades/{trade['id']}/offers",
        json={"offered_coin_id": world.coin_y, "message": "swap?"},
    )
    assert r.status_code == 201, r.text
    offer = r.json()
    assert offer["status"] == "pending"
    assert offer["sequence"] == 1
    assert offer["is_counter_offer"] is False
    assert offer["offered_coin"]["id"] == world.coin_y
    assert offer["message"] == "swap?"

    r = client.get(f"/api/trades/{trade['id']}")
    assert r.json()["status"] == "countered"


def test_counter_offer_sequence_and_flag(client, as_user, world):
    trade = _initiate(client, as_user, world)
    client.post(f"/api/trades/{trade['id']}/offers", json={"message": "first"})

    as_user(world.b)
    r = client.post(f"/api/trades/{trade['id']}/offers", json={"message": "counter"})
    assert r.status_code == 201
    assert r.json()["sequence"] == 2
    assert r.json()["is_counter_offer"] is True

    r = client.post(f"/api/trades/{trade['id']}/offers", json={"message": "again"})
    assert r.json()["sequence"] == 3
    assert r.json()["is_counter_offer"] is False

    detail = client.get(f"/api/trades/{trade['id']}").json()
    assert [o["sequence"] for o in detail["offers"]] == [1, 2, 3]
    assert detail["status"] == "countered"


def test_offer_coin_checks(client, as_user, world):
    trade = _initiate(client, as_user, world)

    r = client.post(f"/api/trades/{trade['id']}/offers", json={"offered_coin_id": world.coin_w})
    assert r.status_code == 403

    r = client.post(
        f"/api/trades/{trade['id']}/offers", json={"offered_coin_id": str(uuid.uuid4())}
    )
    assert r.status_code == 404

    r = client.post(f"/api/trades/{trade['id']}/offers", json={"message": "x" * 1001})
    assert r.status_code == 400

    as_user(world.c)
    r = client.post(f"/api/trades/{trade['id']}/offers", json={"message": "hi"})
    assert r.status_code == 403

    as_user(world.a)
    detail = client.get(f"/api/trades/{trade['id']}").json()
    assert detail["offers"] == []
    assert detail["status"] == "pending"


def test_owner_accepts_offer_and_other_pending_offers_are_rejected(client, as_user, world):
    trade = _initiate(client, as_user, world)
    first = client.post(f"/api/trades/{trade['id']}/offers", json={"message": "one"}).json()
    second = client.post(f"/api/trades/{trade['id']}/offers", json={"message": "two"}).json()

    as_user(world.b)
    r = client.post(f"/api/trades/{trade['id']}/offers/{second['id']}/accept")
    assert r.status_code == 200, r.text
    detail = r.json()
    assert detail["status"] == "accepted"
    statuses = {o["id"]: o["status"] for o in detail["offers"]}
    assert statuses == {first["id"]: "rejected", second["id"]: "accepted"}


def test_initiator_cannot_accept(client, as_user, world):
    trade = _initiate(client, as_user, world)
    offer = client.post(f"/api/trades/{trade['id']}/offers", json={"message": "x"}).json()

    r = client.post(f"/api/trades/{trade['id']}/offers/{offer['id']}/accept")
    assert r.status_code == 403
    r = client.post(f"/api/trades/{trade['id']}/offers/{offer['id']}/reject")
    assert r.status_code == 403


def test_reject_offer_keeps_trade_open(client, as_user, world):
    trade = _initiate(client, as_user, world)
    offer = client.post(f"/api/trades/{trade['id']}/offers", json={"message": "x"}).json()

    as_user(world.b)
    r = client.post(f"/api/trades/{trade['id']}/offers/{offer['id']}/reject")
    assert r.status_code == 200
    assert r.json()["status"] == "countered"
    assert r.json()["offers"][0]["status"] == "rejected"

    r = client.post(f"/api/trades/{trade['id']}/offers/{offer['id']}/accept")
    assert r.status_code == 409


def test_accept_unknown_offer_is_not_found(client, as_user, world):
    trade = _initiate(client, as_user, world)
    as_user(world.b)
    r = client.post(f"/api/trades/{trade['id']}/offers/{uuid.uuid4()}/accept")
    assert r.status_code == 404


def test_full_happy_path_to_completion(client, as_user, world):
    trade, _ = _accepted_trade(client, as_user, world)
    trade_id = trade["id"]
    assert trade["status"] == "accepted"

    as_user(world.a)
    r = client.post(f"/api/trades/{trade_id}/shipping/shipped", json={"tracking_number": "123"})
    assert r.status_code == 200
    as_user(world.b)
    r = client.post(f"/api/trades/{trade_id}/shipping/shipped", json={"tracking_number": "456"})
    assert r.status_code == 200
    shipping = r.json()["shipping"]
    assert shipping["initiator_tracking_number"] == "123"
    assert shipping["owner_tracking_number"] == "456"
    assert shipping["initiator_shipped"] and shipping["owner_shipped"]

    as_user(world.a)
    r = client.post(f"/api/trades/{trade_id}/shipping/received")
    assert r.json()["status"] == "accepted"
    as_user(world.b)
    r = client.post(f"/api/trades/{trade_id}/shipping/received")
    assert r.status_code == 200
    assert r.json()["status"] == "completed"


def test_accept_on_completed_trade_is_invalid_state(client, as_user, world):
    trade, offer = _accepted_trade(client, as_user, world)
    trade_id = trade["id"]
    for user in (world.a, world.b):
        as_user(user)
        client.post(f"/api/trades/{trade_id}/shipping/received")

    as_user(world.b)
    r = client.post(f"/api/trades/{trade_id}/offers/{offer['id']}/accept")
    assert r.status_code == 409
    assert r.json()["code"] == "invalid_state"


def test_shipping_before_acceptance_is_invalid_state(client, as_user, world):
    trade = _initiate(client, as_user, world)
    r = client.post(f"/api/trades/{trade['id']}/shipping/shipped", json={"tracking_number": "1"})
    assert r.status_code == 409
    assert r.json()["code"] == "invalid_state"


def test_non_party_cannot_message_or_view(client, as_user, world):
    trade = _initiate(client, as_user, world)

    as_user(world.c)
    r = client.post(f"/api/trades/{trade['id']}/messages", json={"content": "hello"})
    assert r.status_code == 403
    assert r.json()["code"] == "forbidden"
    r = client.get(f"/api/trades/{trade['id']}")
    assert r.status_code == 403


def test_messages_are_ordered_and_validated(client, as_user, world):
    trade = _initiate(client, as_user, world)
    r = client.post(f"/api/trades/{trade['id']}/messages", json={"content": "hi bob"})
    assert r.status_code == 201
    assert r.json()["sender"]["username"] == "alice"

    as_user(world.b)
    client.post(f"/api/trades/{trade['id']}/messages", json={"content": "hi alice"})

    r = client.post(f"/api/trades/{trade['id']}/messages", json={"content": ""})
    assert r.status_code == 400
    r = client.post(f"/api/trades/{trade['id']}/messages", json={"content": "x" * 5001})
    assert r.status_code == 400

    detail = client.get(f"/api/trades/{trade['id']}").json()
    assert [m["content"] for m in detail["messages"]] == ["hi bob", "hi alice"]
    assert detail["last_message"]["content"] == "hi alice"


def test_list_trades_filters_by_status_and_role(client, as_user, world):
    trade = _initiate(client, as_user, world)
    r = client.post("/api/trades", json={"coin_id": world.coin_w})
    other = r.json()

    as_user(world.b)
    client.post(f"/api/trades/{trade['id']}/messages", json={"content": "latest"})

    as_user(world.a)
    items = client.get("/api/trades").json()["items"]
    assert {t["id"] for t in items} == {trade["id"], other["id"]}
    by_id = {t["id"]: t for t in items}
    assert by_id[trade["id"]]["last_message"]["content"] == "latest"
    assert by_id[other["id"]]["last_message"] is None

    items = client.get("/api/trades", params={"role": "owner"}).json()["items"]
    assert items == []

    as_user(world.b)
    items = client.get("/api/trades", params={"role": "owner", "status": "pending"}).json()["items"]
    assert [t["id"] for t in items] == [trade["id"]]

    r = client.get("/api/trades", params={"status": "bogus"})
    assert r.status_code == 400


def test_cancel_rules(client, as_user, world):
    trade = _initiate(client, as_user, world)

    as_user(world.b)
    r = client.post(f"/api/trades/{trade['id']}/cancel")
    assert r.status_code == 403

    as_user(world.c)
    r = client.post(f"/api/trades/{trade['id']}/cancel")
    assert r.status_code == 403

    as_user(world.a)
    r = client.post(f"/api/trades/{trade['id']}/cancel")
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"

    r = client.post(f"/api/trades/{trade['id']}/cancel")
    assert r.status_code == 409


def test_owner_can_cancel_accepted_trade(client, as_user, world):
    trade, _ = _accepted_trade(client, as_user, world)
    as_user(world.b)
    r = client.post(f"/api/trades/{trade['id']}/cancel")
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"


def test_owner_declines_trade(client, as_user, world):
    trade = _initiate(client, as_user, world)
    client.post(f"/api/trades/{trade['id']}/offers", json={"message": "x"})

    r = client.post(f"/api/trades/{trade['id']}/decline")
    assert r.status_code == 403

    as_user(world.b)
    r = client.post(f"/api/trades/{trade['id']}/decline")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "rejected"
    assert body["offers"][0]["status"] == "rejected"

    as_user(world.a)
    r = client.post(f"/api/trades/{trade['id']}/offers", json={"message": "please"})
    assert r.status_code == 409


def test_unknown_and_malformed_trade_ids(client, as_user, world):
    as_user(world.a)
    r = client.get(f"/api/trades/{uuid.uuid4()}")
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"

    r = client.get("/api/trades/not-a-uuid")
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"


def test_rating_after_completion(client, as_user, world):
    trade, offer = _accepted_trade(client, as_user, world)
    trade_id = trade["id"]

    as_user(world.a)
    r = client.post(f"/api/trades/{trade_id}/ratings", json={"rating": 5})
    assert r.status_code == 409

    for user in (world.a, world.b):
        as_user(user)
        client.post(f"/api/trades/{trade_id}/shipping/received")

    as_user(world.a)
    r = client.post(f"/api/trades/{trade_id}/ratings", json={"rating": 5})
    assert r.status_code == 201
    assert r.json()["rated_user_id"] == world.b

    r = client.post(f"/api/trades/{trade_id}/ratings", json={"rating": 4})
    assert r.status_code == 409

    r = client.post(f"/api/trades/{trade_id}/ratings", json={"rating": 6})
    assert r.status_code == 400

    as_user(world.c)
    r = client.post(f"/api/trades/{trade_id}/ratings", json={"rating": 1})
    assert r.status_code == 403


def test_responses_carry_request_id(client, as_user, world):
    as_user(world.a)
    r = client.get("/api/trades", headers={"X-Request-ID": "req-123"})
    assert r.status_code == 200
    assert r.headers["X-Request-ID"] == "req-123"

    r = client.get(f"/api/trades/{uuid.uuid4()}", headers={"X-Request-ID": "req-456"})
    assert r.json()["request_id"] == "req-456"


def test_offers_stack_on_accepted_trade(client, as_user, world):
    trade, agreed = _accepted_trade(client, as_user, world)
    trade_id = trade["id"]

    as_user(world.a)
    r = client.post(f"/api/trades/{trade_id}/offers", json={"message": "add a second coin?"})
    assert r.status_code == 201, r.text
    extra = r.json()
    assert extra["status"] == "pending"
    assert extra["sequence"] == 2

    as_user(world.b)
    r = client.post(f"/api/trades/{trade_id}/offers/{extra['id']}/reject")
    assert r.status_code == 200
    assert r.json()["status"] == "accepted"

    r = client.post(
        f"/api/trades/{trade_id}/offers",
        json={"offered_coin_id": world.coin_x, "message": "keep yours, take this"},
    )
    assert r.status_code == 201
    replacement = r.json()
    assert replacement["is_counter_offer"] is True

    r = client.post(f"/api/trades/{trade_id}/offers/{replacement['id']}/accept")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "accepted"
    statuses = {o["id"]: o["status"] for o in body["offers"]}
    assert statuses == {
        agreed["id"]: "rejected",
        extra["id"]: "rejected",
        replacement["id"]: "accepted",
    }


def test_offers_refused_once_trade_is_closed_or_disputed(client, as_user, world):
    trade, _ = _accepted_trade(client, as_user, world)
    trade_id = trade["id"]
    for user in (world.a, world.b):
        as_user(user)
        client.post(f"/api/trades/{trade_id}/shipping/received")

    as_user(world.a)
    r = client.post(f"/api/trades/{trade_id}/offers", json={"message": "late"})
    assert r.status_code == 409
    assert r.json()["trade_status"] == "completed"

    as_user(world.b)
    other = client.post("/api/trades", json={"coin_id": world.coin_w}).json()
    client.post(f"/api/trades/{other['id']}/reports", json={"reason": "Spam"})
    r = client.post(f"/api/trades/{other['id']}/offers", json={"message": "still?"})
    assert r.status_code == 409
    assert r.json()["trade_status"] == "disputed"


def test_offers_and_messages_are_not_rewritten_by_later_actions(client, as_user, world):
    offer_fields = ("offerer_id", "offered_coin_id", "message", "sequence", "is_counter_offer", "created_at")
    message_fields = ("content", "sender_id", "created_at")

    trade = _initiate(client, as_user, world)
    trade_id = trade["id"]
    first = client.post(
        f"/api/trades/{trade_id}/offers", json={"offered_coin_id": world.coin_y, "message": "swap?"}
    ).json()
    client.post(f"/api/trades/{trade_id}/messages", json={"content": "hello"})

    as_user(world.b)
    counter = client.post(f"/api/trades/{trade_id}/offers", json={"message": "add cash"}).json()
    client.post(f"/api/trades/{trade_id}/messages", json={"content": "thoughts?"})
    before = client.get(f"/api/trades/{trade_id}").json()
    snapshot_offers = {o["id"]: {k: o[k] for k in offer_fields} for o in before["offers"]}
    snapshot_messages = {m["id"]: {k: m[k] for k in message_fields} for m in before["messages"]}
    assert len(snapshot_offers) == 2 and len(snapshot_messages) == 2

    client.post(f"/api/trades/{trade_id}/offers/{counter['id']}/reject")
    client.post(f"/api/trades/{trade_id}/offers/{first['id']}/accept")
    client.post(f"/api/trades/{trade_id}/shipping/shipped", json={"tracking_number": "456"})
    client.post(f"/api/trades/{trade_id}/shipping/received")
    as_user(world.a)
    client.post(f"/api/trades/{trade_id}/shipping/shipped", json={"tracking_number": "123"})
    r = client.post(f"/api/trades/{trade_id}/reports", json={"reason": "Damaged in transit"})
    assert r.status_code == 201

    after = client.get(f"/api/trades/{trade_id}").json()
    assert after["status"] == "disputed"
    assert {o["id"]: {k: o[k] for k in offer_fields} for o in after["offers"]} == snapshot_offers
    assert {m["id"]: {k: m[k] for k in message_fields} for m in after["messages"]} == snapshot_messages
    assert {o["id"]: o["status"] for o in after["offers"]} == {
        first["id"]: "accepted",
        counter["id"]: "rejected",
    }
