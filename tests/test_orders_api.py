"""
Order placement, status flow and live notifications through the HTTP and
websocket surface.
"""
import pytest

from bites.models import Role

from conftest import ADDRESS, order_payload


@pytest.fixture
def customer(make_user):
    return make_user(Role.CUSTOMER)


@pytest.fixture
def rider(make_user):
    return make_user(Role.DELIVERY_PARTNER)


@pytest.fixture
def placed(client, menu, customer, auth_headers):
    r = client.post("/api/orders", json=order_payload(menu), headers=auth_headers(customer))
    assert r.status_code == 201, r.text
    return r.json()["data"]["order"]


def _status(client, headers, order_id, status, **extra):
    return client.patch(f"/api/orders/{order_id}/status", json={"status": status, **extra}, headers=headers)


class TestPlacement:

    def test_priced_from_the_menu(self, placed, menu, customer):
        assert placed["status"] == "pending"
        assert placed["order_number"].startswith("ORD")
        assert placed["customer_id"] == customer.id
        assert placed["pricing"] == {
            "subtotal": 260.0,
            "delivery_fee": 20.0,
            "taxes": 13.0,
            "coupon_code": "SAVE15",
            "coupon_discount": 15.0,
            "total_amount": 278.0,
        }
        assert placed["payment"]["status"] == "pending"
        assert placed["delivery"]["address"]["pincode"] == "560001"
        assert placed["timestamps"]["placed_at"] is not None
        assert placed["timestamps"]["confirmed_at"] is None

    def test_client_prices_are_ignored(self, client, menu, customer, auth_headers):
        body = order_payload(menu)
        body["items"][0]["price"] = 1
        r = client.post("/api/orders", json=body, headers=auth_headers(customer))
        assert r.json()["data"]["order"]["pricing"]["total_amount"] == 278.0

    def test_expected_total_mismatch(self, client, menu, customer, auth_headers):
        r = client.post("/api/orders", json=order_payload(menu, expected_total=200), headers=auth_headers(customer))
        assert r.status_code == 409
        assert r.json()["error"]["code"] == "PRICE_CHANGED"

    def test_unavailable_item(self, client, menu, customer, auth_headers):
        body = order_payload(menu, items=[{"menu_item_id": menu.sold_out.id, "quantity": 1}])
        r = client.post("/api/orders", json=body, headers=auth_headers(customer))
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "ITEM_UNAVAILABLE"

    def test_unknown_customization(self, client, menu, customer, auth_headers):
        body = order_payload(
            menu,
            items=[{"menu_item_id": menu.dosa.id, "quantity": 1, "customizations": [{"name": "Extra", "option": "Gold"}]}],
        )
        r = client.post("/api/orders", json=body, headers=auth_headers(customer))
        assert r.json()["error"]["code"] == "INVALID_CUSTOMIZATION"

    def test_coupon_below_minimum(self, client, menu, customer, auth_headers):
        body = order_payload(menu, items=[{"menu_item_id": menu.dosa.id, "quantity": 1}])
        r = client.post("/api/orders", json=body, headers=auth_headers(customer))
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "INVALID_COUPON"

    def test_falls_back_to_default_address(self, client, menu, customer, auth_headers):
        headers = auth_headers(customer)
        body = order_payload(menu)
        body["delivery"] = {"estimated_time": 25}

        r = client.post("/api/orders", json=body, headers=headers)
        assert r.status_code == 400

        client.post("/api/profile/addresses", json=ADDRESS, headers=headers)
        r = client.post("/api/orders", json=body, headers=headers)
        assert r.status_code == 201
        assert r.json()["data"]["order"]["delivery"]["address"]["city"] == "Bengaluru"

    def test_wallet_needs_balance(self, client, menu, customer, auth_headers):
        r = client.post("/api/orders", json=order_payload(menu, payment_method="wallet"), headers=auth_headers(customer))
        assert r.status_code == 409
        assert r.json()["error"]["code"] == "INSUFFICIENT_WALLET_BALANCE"
        assert client.get("/api/orders", headers=auth_headers(customer)).json()["data"]["orders"] == []

    def test_only_customers_place_orders(self, client, menu, rider, auth_headers):
        r = client.post("/api/orders", json=order_payload(menu), headers=auth_headers(rider))
        assert r.status_code == 403

    def test_quote_matches_placement(self, client, menu, customer, auth_headers):
        body = order_payload(menu)
        quote = {k: body[k] for k in ("restaurant_id", "items", "coupon_code")}
        r = client.post("/api/cart/quote", json=quote, headers=auth_headers(customer))
        assert r.json()["data"]["pricing"]["total"] == 278.0


class TestStatusFlow:

    def test_full_lifecycle(self, client, placed, menu, customer, rider, auth_headers, emailer):
        owner = auth_headers(menu.owner)
        oid = placed["id"]

        r = _status(client, owner, oid, "confirmed")
        assert r.status_code == 200
        assert r.json()["data"]["order"]["timestamps"]["confirmed_at"] is not None
        assert emailer.sent[-1][1] == "order_confirmation"
        assert emailer.sent[-1][0] == customer.email

        assert _status(client, owner, oid, "preparing").status_code == 200
        assert _status(client, owner, oid, "ready_for_pickup").status_code == 200

        available = client.get("/api/delivery/available-orders", headers=auth_headers(rider)).json()["data"]["orders"]
        assert [o["id"] for o in available] == [oid]

        r = client.post(f"/api/orders/{oid}/assign", headers=auth_headers(rider))
        assert r.json()["data"]["order"]["delivery_partner_id"] == rider.id

        assert _status(client, owner, oid, "out_for_delivery").status_code == 403
        assert _status(client, auth_headers(rider), oid, "out_for_delivery").status_code == 200

        r = client.post(
            f"/api/orders/{oid}/location",
            json={"coordinates": {"latitude": 12.9, "longitude": 77.6}},
            headers=auth_headers(rider),
        )
        assert r.status_code == 200

        r = _status(client, auth_headers(rider), oid, "delivered")
        order = r.json()["data"]["order"]
        assert order["status"] == "delivered"
        assert order["timestamps"]["delivered_at"] is not None

        r = _status(client, auth_headers(customer), oid, "cancelled")
        assert r.status_code == 409
        assert r.json()["error"]["code"] == "INVALID_TRANSITION"

    def test_skipping_a_step_is_rejected(self, client, placed, menu, auth_headers):
        r = _status(client, auth_headers(menu.owner), placed["id"], "ready_for_pickup")
        assert r.status_code == 409
        assert r.json()["error"]["code"] == "INVALID_TRANSITION"

    def test_stale_expected_status(self, client, placed, menu, customer, auth_headers):
        _status(client, auth_headers(menu.owner), placed["id"], "confirmed")
        r = _status(client, auth_headers(customer), placed["id"], "cancelled", expected_status="pending")
        assert r.status_code == 409
        assert r.json()["error"]["code"] == "STATUS_CONFLICT"

    def test_customer_cannot_confirm(self, client, placed, customer, auth_headers):
        r = _status(client, auth_headers(customer), placed["id"], "confirmed")
        assert r.status_code == 403
        assert r.json()["error"]["code"] == "ACCESS_DENIED"

    def test_confirmation_email_failure_is_a_warning(self, client, placed, menu, auth_headers, emailer):
        emailer.fail = True
        r = _status(client, auth_headers(menu.owner), placed["id"], "confirmed")
        assert r.status_code == 200
        assert r.json()["warnings"] == ["order_confirmation_email"]
        assert r.json()["data"]["order"]["status"] == "confirmed"

    def test_second_rider_cannot_claim(self, client, placed, menu, rider, make_user, auth_headers):
        owner = auth_headers(menu.owner)
        for s in ("confirmed", "preparing", "ready_for_pickup"):
            _status(client, owner, placed["id"], s)
        client.post(f"/api/orders/{placed['id']}/assign", headers=auth_headers(rider))

        other = make_user(Role.DELIVERY_PARTNER)
        r = client.post(f"/api/orders/{placed['id']}/assign", headers=auth_headers(other))
        assert r.status_code == 409
        assert r.json()["error"]["code"] == "ALREADY_ASSIGNED"

        again = client.post(f"/api/orders/{placed['id']}/assign", headers=auth_headers(rider))
        assert again.status_code == 200

    def test_location_only_while_out_for_delivery(self, client, placed, rider, auth_headers):
        r = client.post(
            f"/api/orders/{placed['id']}/location",
            json={"coordinates": {"latitude": 1, "longitude": 2}},
            headers=auth_headers(rider),
        )
        assert r.status_code == 403


class TestVisibilityAndPayment:

    def test_strangers_cannot_read_orders(self, client, placed, make_user, auth_headers, customer, menu):
        stranger = make_user(Role.CUSTOMER)
        r = client.get(f"/api/orders/{placed['id']}", headers=auth_headers(stranger))
        assert r.status_code == 403
        assert client.get(f"/api/orders/{placed['id']}", headers=auth_headers(customer)).status_code == 200
        assert client.get(f"/api/orders/{placed['id']}", headers=auth_headers(menu.owner)).status_code == 200

    def test_restaurant_order_listing(self, client, placed, menu, auth_headers):
        headers = auth_headers(menu.owner)
        rid = menu.restaurant.id
        assert len(client.get(f"/api/restaurants/{rid}/orders", headers=headers).json()["data"]["orders"]) == 1
        r = client.get(f"/api/restaurants/{rid}/orders", params={"status": "delivered"}, headers=headers)
        assert r.json()["data"]["orders"] == []

    def test_payment_status_moves(self, client, placed, make_user, auth_headers):
        admin = auth_headers(make_user(Role.ADMIN))
        url = f"/api/orders/{placed['id']}/payment"

        r = client.patch(url, json={"status": "paid", "payment_ref": "pay_123"}, headers=admin)
        assert r.json()["data"]["order"]["payment"] == {
            "method": "cash_on_delivery",
            "status": "paid",
            "payment_order_ref": None,
            "payment_ref": "pay_123",
        }
        r = client.patch(url, json={"status": "failed"}, headers=admin)
        assert r.status_code == 409
        assert r.json()["error"]["code"] == "INVALID_TRANSITION"


class TestLiveNotifications:

    def test_customer_sees_status_change(self, client, placed, menu, customer, auth_headers):
        token = auth_headers(customer)["Authorization"].split(" ", 1)[1]
        with client.websocket_connect(f"/ws?token={token}") as ws:
            hello = ws.receive_json()
            assert hello["type"] == "connected"
            assert f"user:{customer.id}" in hello["channels"]

            r = _status(client, auth_headers(menu.owner), placed["id"], "confirmed")
            assert r.status_code == 200

            event = ws.receive_json()
            assert event["type"] == "status_update"
            assert event["orderId"] == placed["id"]
            assert event["status"] == "confirmed"
            assert event["orderNumber"] == placed["order_number"]

    def test_restaurant_hears_new_orders(self, client, menu, customer, auth_headers):
        token = auth_headers(menu.owner)["Authorization"].split(" ", 1)[1]
        with client.websocket_connect(f"/ws?token={token}") as ws:
            hello = ws.receive_json()
            assert f"restaurant:{menu.restaurant.id}" in hello["channels"]

            client.post("/api/orders", json=order_payload(menu), headers=auth_headers(customer))
            event = ws.receive_json()
            assert event["type"] == "new_order"
            assert event["orderData"]["totalAmount"] == 278.0

    def test_join_rules(self, client, placed, customer, make_user, auth_headers):
        token = auth_headers(customer)["Authorization"].split(" ", 1)[1]
        other = make_user(Role.CUSTOMER)
        with client.websocket_connect(f"/ws?token={token}") as ws:
            ws.receive_json()

            ws.send_json({"action": "join", "channel": f"order:{placed['id']}"})
            assert ws.receive_json() == {"type": "ack", "action": "join", "channel": f"order:{placed['id']}"}

            ws.send_json({"action": "join", "channel": f"user:{other.id}"})
            assert ws.receive_json()["code"] == "ACCESS_DENIED"

            ws.send_json({"action": "join", "channel": "kitchen:1"})
            assert ws.receive_json()["code"] == "VALIDATION_ERROR"

    def test_riders_hear_orders_ready_for_pickup(self, client, placed, menu, rider, auth_headers):
        token = auth_headers(rider)["Authorization"].split(" ", 1)[1]
        owner = auth_headers(menu.owner)
        with client.websocket_connect(f"/ws?token={token}") as ws:
            hello = ws.receive_json()
            assert "delivery:requests" in hello["channels"]

            for step in ("confirmed", "preparing", "ready_for_pickup"):
                assert _status(client, owner, placed["id"], step).status_code == 200

            event = ws.receive_json()
            assert event["type"] == "delivery_request"
            assert event["orderData"]["orderId"] == placed["id"]
            assert event["location"]["pincode"] == ADDRESS["pincode"]

    def test_bad_token_is_refused(self, client):
        with client.websocket_connect("/ws?token=nope") as ws:
            msg = ws.receive_json()
            assert msg["type"] == "error"
            assert msg["code"] == "INVALID_TOKEN"
