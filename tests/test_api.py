from datetime import date, timedelta

import pytest
import requests

import routes_api


def _post(client, url, **body):
    return client.post(url, json=body)


@pytest.fixture
def ids(world):
    return {
        "owner": world["owner"].id,
        "restaurant": world["restaurant"].id,
        "burger": world["burger"].id,
        "fries": world["fries"].id,
        "customer": world["customer"].id,
        "agent": world["agent"].id,
        "admin": world["admin"].id,
    }


def _place(client, ids, **extra):
    items = [{"menu_id": ids["burger"], "quantity": 2}, {"menu_id": ids["fries"]}]
    return _post(client, "/api/orders", customer_id=ids["customer"], items=items, **extra)


def test_register_and_fetch_user(client):
    resp = _post(client, "/api/users", name="Pat", email="Pat@Example.com", password="long-enough",
                 address="1 Road")
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["email"] == "pat@example.com"
    assert body["role"] == "customer"
    assert body["customer_id"] is not None
    assert "password" not in body and "password_hash" not in body

    fetched = client.get(f"/api/users/{body['id']}").get_json()
    assert fetched == body


def test_register_duplicate_email_conflicts(client, ids):
    resp = _post(client, "/api/users", name="Copy", email="cara@example.com", password="long-enough")
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "unique"


def test_register_missing_fields(client):
    resp = _post(client, "/api/users", name="Pat")
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["error"] == "validation"
    assert "email" in body["message"] and "password" in body["message"]


def test_unknown_user_is_404(client):
    resp = client.get("/api/users/404")
    assert resp.status_code == 404
    assert resp.get_json() == {"ok": False, "error": "not_found", "message": "User 404 not found"}


def test_restaurant_and_menu_endpoints(client, ids):
    restaurants = client.get("/api/restaurants").get_json()
    assert [r["name"] for r in restaurants] == ["Burger Barn"]

    resp = _post(client, f"/api/restaurants/{ids['restaurant']}/menu", item_name="Shake", price="3.50")
    assert resp.status_code == 201
    shake = resp.get_json()
    assert shake["price"] == 3.5

    resp = client.patch(f"/api/menu/{shake['id']}", json={"price": "3.75", "description": "Vanilla"})
    assert resp.get_json()["price"] == 3.75
    assert resp.get_json()["description"] == "Vanilla"

    menu = client.get(f"/api/restaurants/{ids['restaurant']}/menu").get_json()
    assert [m["item_name"] for m in menu] == ["Classic Burger", "Fries", "Shake"]

    assert client.delete(f"/api/menu/{shake['id']}").status_code == 200


def test_create_restaurant_requires_owner_role(client, ids):
    resp = _post(client, "/api/restaurants", owner_id=ids["admin"], name="Admin Diner")
    assert resp.status_code == 201
    assert resp.get_json()["owner_id"] == ids["admin"]

    user = _post(client, "/api/users", name="Pat", email="pat@example.com", password="long-enough").get_json()
    resp = _post(client, "/api/restaurants", owner_id=user["id"], name="Pat's")
    assert resp.status_code == 400


def test_delete_restaurant_with_menu_conflicts(client, ids):
    resp = client.delete(f"/api/restaurants/{ids['restaurant']}")
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "foreign_key"
    assert client.get(f"/api/restaurants/{ids['restaurant']}").status_code == 200


def test_negative_price_is_rejected(client, ids):
    resp = _post(client, f"/api/restaurants/{ids['restaurant']}/menu", item_name="Bad", price=-2)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "check"


def test_promotion_endpoints(client, ids):
    today = date.today()
    resp = _post(client, "/api/promotions", code="api10", discount_percentage=10,
                 valid_from=(today - timedelta(days=1)).isoformat(),
                 valid_to=(today + timedelta(days=1)).isoformat())
    assert resp.status_code == 201
    assert resp.get_json()["code"] == "API10"

    dup = _post(client, "/api/promotions", code="API10", discount_percentage=5,
                valid_from=today.isoformat(), valid_to=today.isoformat())
    assert dup.status_code == 409

    assert client.get("/api/promotions/api10").get_json()["status"] == "ACTIVE"
    resp = client.patch("/api/promotions/API10/status", json={"status": "INACTIVE"})
    assert resp.get_json()["status"] == "INACTIVE"


def test_order_payment_delivery_flow(client, ids):
    resp = _place(client, ids)
    assert resp.status_code == 201
    order = resp.get_json()
    assert order["status"] == "PLACED"
    assert order["total_amount"] == 19.99
    assert {i["item_name"] for i in order["items"]} == {"Classic Burger", "Fries"}

    resp = _post(client, f"/api/orders/{order['id']}/payment", payment_method="card", transaction_id="txn_api_1")
    assert resp.status_code == 201
    payment = resp.get_json()
    assert payment["status"] == "COMPLETED"
    assert payment["amount"] == 19.99

    again = _post(client, f"/api/orders/{order['id']}/payment", payment_method="cash")
    assert again.status_code == 409

    resp = _post(client, f"/api/orders/{order['id']}/delivery", eta_minutes=15)
    assert resp.status_code == 201
    delivery = resp.get_json()
    assert delivery["agent_id"] == ids["agent"]
    assert delivery["delivery_status"] == "ASSIGNED"

    for status in ("PICKED_UP", "DELIVERED"):
        resp = client.patch(f"/api/deliveries/{delivery['id']}/status", json={"status": status})
        assert resp.status_code == 200

    full = client.get(f"/api/orders/{order['id']}").get_json()
    assert full["status"] == "DELIVERED"
    assert full["payment"]["transaction_id"] == "txn_api_1"
    assert full["delivery"]["delivery_status"] == "DELIVERED"
    assert full["delivery"]["delivery_date"] is not None

    history = client.get(f"/api/customers/{ids['customer']}/orders").get_json()
    assert [o["id"] for o in history] == [order["id"]]


def test_order_with_promotion(client, ids):
    today = date.today()
    _post(client, "/api/promotions", code="HALF", discount_percentage=50,
          valid_from=(today - timedelta(days=1)).isoformat(), valid_to=(today + timedelta(days=1)).isoformat())

    order = _place(client, ids, promo_code="half").get_json()
    assert order["total_amount"] == 10.0
    assert order["promo_id"] is not None


def test_order_for_unknown_customer(client, ids):
    resp = _post(client, "/api/orders", customer_id=999, items=[{"menu_id": ids["burger"]}])
    assert resp.status_code == 404


def test_illegal_order_transition(client, ids):
    order = _place(client, ids).get_json()
    resp = client.patch(f"/api/orders/{order['id']}/status", json={"status": "DELIVERED"})
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "invalid_transition"

    resp = client.patch(f"/api/orders/{order['id']}/status", json={"status": "CANCELLED"})
    assert resp.get_json()["status"] == "CANCELLED"


def test_cancelling_assigned_order_frees_agent(client, ids):
    order = _place(client, ids).get_json()
    _post(client, f"/api/orders/{order['id']}/payment", payment_method="CARD")
    delivery = _post(client, f"/api/orders/{order['id']}/delivery").get_json()

    resp = client.patch(f"/api/orders/{order['id']}/status", json={"status": "CANCELLED"})
    assert resp.status_code == 200

    fetched = client.get(f"/api/orders/{order['id']}").get_json()
    assert fetched["delivery"]["id"] == delivery["id"]
    assert fetched["delivery"]["delivery_status"] == "FAILED"
    assert fetched["delivery"]["delivery_date"] is not None

    again = _place(client, ids).get_json()
    _post(client, f"/api/orders/{again['id']}/payment", payment_method="CARD")
    resp = _post(client, f"/api/orders/{again['id']}/delivery")
    assert resp.status_code == 201
    assert resp.get_json()["agent_id"] == ids["agent"]


def test_non_object_body_is_rejected(client):
    resp = client.post("/api/users", json=[1, 2])
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "validation"


def test_order_items_must_be_a_list(client, ids):
    resp = _post(client, "/api/orders", customer_id=ids["customer"], items=5)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "validation"


def test_infinite_price_is_rejected(client, ids):
    resp = _post(client, f"/api/restaurants/{ids['restaurant']}/menu", item_name="Endless Fries", price="Infinity")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "validation"


def test_fractional_rating_is_rejected(client, ids):
    url = f"/api/restaurants/{ids['restaurant']}/reviews"
    resp = _post(client, url, customer_id=ids["customer"], rating=5.9)
    assert resp.status_code == 400
    assert client.get(url).get_json()["rating"]["count"] == 0


def test_negative_eta_is_rejected(client, ids):
    order = _place(client, ids).get_json()
    _post(client, f"/api/orders/{order['id']}/payment", payment_method="CARD")
    resp = _post(client, f"/api/orders/{order['id']}/delivery", eta_minutes=-10)
    assert resp.status_code == 400


def test_payment_refund_endpoint(client, ids):
    order = _place(client, ids).get_json()
    payment = _post(client, f"/api/orders/{order['id']}/payment", payment_method="WALLET").get_json()
    resp = client.patch(f"/api/payments/{payment['id']}/status", json={"status": "REFUNDED"})
    assert resp.get_json()["status"] == "REFUNDED"


def test_unpaid_delivery_is_rejected(client, ids):
    order = _place(client, ids).get_json()
    resp = _post(client, f"/api/orders/{order['id']}/delivery")
    assert resp.status_code == 400


def test_reviews_endpoints(client, ids):
    url = f"/api/restaurants/{ids['restaurant']}/reviews"
    assert _post(client, url, customer_id=ids["customer"], rating=4, comment="Tasty").status_code == 201
    assert _post(client, url, customer_id=ids["customer"], rating=2).status_code == 201

    bad = _post(client, url, customer_id=ids["customer"], rating=6)
    assert bad.status_code == 400
    assert bad.get_json()["error"] == "check"

    body = client.get(url).get_json()
    assert len(body["reviews"]) == 2
    assert body["rating"] == {"average": 3.0, "count": 2}

    restaurant = client.get(f"/api/restaurants/{ids['restaurant']}").get_json()
    assert restaurant["rating"]["count"] == 2


def test_daily_sales_report_endpoint(client, ids, monkeypatch):
    sent = []

    class FakeResponse:
        def raise_for_status(self):
            pass

    def fake_post(url, json, timeout):
        sent.append(json)
        return FakeResponse()

    monkeypatch.setenv("DAILY_SUMMARY_FUNCTION_URL", "https://summary.example/run")
    monkeypatch.setattr(requests, "post", fake_post)

    order = _place(client, ids).get_json()
    report_date = order["order_date"][:10]

    resp = _post(client, "/api/reports/daily-sales", generated_by=ids["admin"], date=report_date)
    assert resp.status_code == 201
    report = resp.get_json()
    assert report["report_type"] == "DAILY_SALES"
    assert report["details"]["order_count"] == 1
    assert report["details"]["revenue"] == "19.99"
    assert report["summary_sent"] is True
    assert sent == [{"date": report_date, "total_sales": 19.99, "order_count": 1}]

    fetched = client.get(f"/api/reports/{report['id']}").get_json()
    assert fetched["summary"] == report["summary"]


def test_report_without_summary_url(client, ids, monkeypatch):
    monkeypatch.delenv("DAILY_SUMMARY_FUNCTION_URL", raising=False)
    resp = _post(client, "/api/reports/daily-sales", generated_by=ids["admin"])
    assert resp.status_code == 201
    assert resp.get_json()["summary_sent"] is False
    assert resp.get_json()["details"]["order_count"] == 0


def test_order_events_are_logged_when_enabled(app, client, ids, monkeypatch):
    events = []

    def fake_log(order_id, customer_email, event, payload=None, database_id="default"):
        events.append((order_id, customer_email, event))
        return "doc-1"

    monkeypatch.setattr(routes_api, "log_order_event", fake_log)
    app.config["FIRESTORE_ENABLED"] = True

    order = _place(client, ids).get_json()
    _post(client, f"/api/orders/{order['id']}/payment", payment_method="CARD")
    _post(client, f"/api/orders/{order['id']}/delivery")

    assert [e[2] for e in events] == ["ORDER_PLACED", "PAYMENT_CAPTURED", "DELIVERY_ASSIGNED"]
    assert {e[1] for e in events} == {"cara@example.com"}


def test_failed_event_log_does_not_fail_request(app, client, ids, monkeypatch):
    def broken_log(*args, **kwargs):
        raise RuntimeError("Firestore write failed after 3 attempts")

    monkeypatch.setattr(routes_api, "log_order_event", broken_log)
    app.config["FIRESTORE_ENABLED"] = True

    assert _place(client, ids).status_code == 201
