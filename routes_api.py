import json

from flask import Blueprint, jsonify, request, current_app
from google.auth.exceptions import GoogleAuthError
from sqlalchemy.exc import IntegrityError

import services
from config import get_secret
from errors import FastFoodError, ValidationError, classify_integrity_error
from firestore_db import log_order_event, ORDER_PLACED, PAYMENT_CAPTURED, DELIVERY_ASSIGNED, STATUS_CHANGED
from sql_db import SessionLocal

api = Blueprint("api", __name__, url_prefix="/api")


# -----------------------
# Errors
# -----------------------
@api.errorhandler(FastFoodError)
def handle_fastfood_error(e: FastFoodError):
    return jsonify(e.to_dict()), e.status_code


@api.errorhandler(IntegrityError)
def handle_integrity_error(e: IntegrityError):
    violation = classify_integrity_error(e)
    current_app.logger.info("Rejected write: %s", violation.message)
    return jsonify(violation.to_dict()), violation.status_code


# -----------------------
# Helpers
# -----------------------
def _payload(*required) -> dict:
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    missing = [f for f in required if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing {', '.join(missing)}")
    return data


def _money(value):
    return float(value) if value is not None else None


def _iso(value):
    return value.isoformat() if value is not None else None


def _audit(order_id, email, event, payload=None):
    """Best-effort write to the order event log; the SQL transaction already committed."""
    if not current_app.config.get("FIRESTORE_ENABLED"):
        return
    try:
        doc_id = log_order_event(
            order_id=order_id,
            customer_email=email,
            event=event,
            payload=payload,
            database_id=current_app.config.get("FIRESTORE_DB_ID", "default"),
        )
        current_app.logger.info("Firestore wrote document %s", doc_id)
    except (RuntimeError, GoogleAuthError) as e:
        current_app.logger.warning("Firestore log failed: %s", e)


def _user_json(u):
    return {
        "id": u.id,
        "name": u.name,
        "email": u.email,
        "role": u.role,
        "phone": u.phone,
        "customer_id": u.customer.id if u.customer else None,
        "agent_id": u.agent.id if u.agent else None,
    }


def _restaurant_json(r):
    return {"id": r.id, "name": r.name, "address": r.address, "phone": r.phone, "owner_id": r.owner_id}


def _menu_json(m):
    return {
        "id": m.id, "restaurant_id": m.restaurant_id, "item_name": m.item_name,
        "description": m.description, "price": _money(m.price),
    }


def _promotion_json(p):
    return {
        "id": p.id, "code": p.code, "discount_percentage": _money(p.discount_percentage),
        "valid_from": _iso(p.valid_from), "valid_to": _iso(p.valid_to), "status": p.status,
    }


def _order_json(o):
    return {
        "id": o.id,
        "customer_id": o.customer_id,
        "order_date": _iso(o.order_date),
        "status": o.status,
        "promo_id": o.promo_id,
        "total_amount": _money(o.total_amount),
        "items": [
            {
                "id": i.id, "menu_id": i.menu_id, "item_name": i.menu.item_name,
                "quantity": i.quantity, "item_price": _money(i.item_price),
            }
            for i in o.items
        ],
    }


def _payment_json(p):
    return {
        "id": p.id, "order_id": p.order_id, "payment_method": p.payment_method,
        "amount": _money(p.amount), "status": p.status,
        "transaction_id": p.transaction_id, "timestamp": _iso(p.timestamp),
    }


def _delivery_json(d):
    return {
        "id": d.id, "order_id": d.order_id, "agent_id": d.agent_id,
        "delivery_status": d.delivery_status, "delivery_date": _iso(d.delivery_date),
        "estimated_delivery_time": _iso(d.estimated_delivery_time),
    }


def _review_json(r):
    return {
        "id": r.id, "customer_id": r.customer_id, "restaurant_id": r.restaurant_id,
        "rating": r.rating, "comment": r.comment, "timestamp": _iso(r.timestamp),
    }


def _report_json(r):
    return {
        "id": r.id, "report_type": r.report_type, "generated_date": _iso(r.generated_date),
        "generated_by": r.generated_by, "summary": r.summary,
        "details": json.loads(r.details) if r.details else None,
    }


# -----------------------
# Users
# -----------------------
@api.post("/users")
def register_user():
    data = _payload("name", "email", "password")
    with SessionLocal() as s:
        user = services.register_user(
            s,
            name=data["name"],
            email=data["email"],
            password=data["password"],
            role=data.get("role", "customer"),
            phone=data.get("phone"),
            address=data.get("address"),
            location=data.get("location"),
        )
        s.commit()
        body = _user_json(user)
    return jsonify(body), 201


@api.get("/users/<int:user_id>")
def get_user(user_id: int):
    with SessionLocal() as s:
        return jsonify(_user_json(services.get_user(s, user_id)))


# -----------------------
# Restaurants & menu
# -----------------------
@api.get("/restaurants")
def list_restaurants():
    with SessionLocal() as s:
        return jsonify([_restaurant_json(r) for r in services.list_restaurants(s)])


@api.post("/restaurants")
def create_restaurant():
    data = _payload("owner_id", "name")
    with SessionLocal() as s:
        r = services.create_restaurant(
            s, owner_id=data["owner_id"], name=data["name"],
            address=data.get("address"), phone=data.get("phone"),
        )
        s.commit()
        body = _restaurant_json(r)
    return jsonify(body), 201


@api.get("/restaurants/<int:restaurant_id>")
def get_restaurant(restaurant_id: int):
    with SessionLocal() as s:
        body = _restaurant_json(services.get_restaurant(s, restaurant_id))
        body["rating"] = services.restaurant_rating(s, restaurant_id)
    return jsonify(body)


@api.delete("/restaurants/<int:restaurant_id>")
def delete_restaurant(restaurant_id: int):
    with SessionLocal() as s:
        services.delete_restaurant(s, restaurant_id)
        s.commit()
    return jsonify({"ok": True})


@api.get("/restaurants/<int:restaurant_id>/menu")
def get_menu(restaurant_id: int):
    with SessionLocal() as s:
        return jsonify([_menu_json(m) for m in services.list_menu(s, restaurant_id)])


@api.post("/restaurants/<int:restaurant_id>/menu")
def create_menu(restaurant_id: int):
    data = _payload("item_name", "price")
    with SessionLocal() as s:
        item = services.add_menu_item(
            s, restaurant_id, item_name=data["item_name"],
            price=data["price"], description=data.get("description"),
        )
        s.commit()
        body = _menu_json(item)
    return jsonify(body), 201


@api.patch("/menu/<int:menu_id>")
def update_menu(menu_id: int):
    data = _payload()
    with SessionLocal() as s:
        item = services.update_menu_item(
            s, menu_id, item_name=data.get("item_name"),
            description=data.get("description"), price=data.get("price"),
        )
        s.commit()
        body = _menu_json(item)
    return jsonify(body)


@api.delete("/menu/<int:menu_id>")
def delete_menu(menu_id: int):
    with SessionLocal() as s:
        services.delete_menu_item(s, menu_id)
        s.commit()
    return jsonify({"ok": True})


# -----------------------
# Promotions
# -----------------------
@api.post("/promotions")
def create_promotion():
    data = _payload("code", "discount_percentage", "valid_from", "valid_to")
    with SessionLocal() as s:
        promo = services.create_promotion(
            s, code=data["code"], discount_percentage=data["discount_percentage"],
            valid_from=data["valid_from"], valid_to=data["valid_to"],
            status=data.get("status", "ACTIVE"),
        )
        s.commit()
        body = _promotion_json(promo)
    return jsonify(body), 201


@api.get("/promotions/<code>")
def get_promotion(code: str):
    with SessionLocal() as s:
        return jsonify(_promotion_json(services.get_promotion(s, code)))


@api.patch("/promotions/<code>/status")
def update_promotion_status(code: str):
    data = _payload("status")
    with SessionLocal() as s:
        promo = services.set_promotion_status(s, code, data["status"])
        s.commit()
        body = _promotion_json(promo)
    return jsonify(body)


# -----------------------
# Orders
# -----------------------
@api.post("/orders")
def place_order():
    data = _payload("customer_id", "items")
    if not isinstance(data["items"], list):
        raise ValidationError("items must be a list of {menu_id, quantity} objects")
    items = [(i.get("menu_id"), i.get("quantity", 1)) for i in data["items"] if isinstance(i, dict)]

    with SessionLocal() as s:
        order = services.place_order(s, data["customer_id"], items, promo_code=data.get("promo_code"))
        s.commit()
        body = _order_json(order)
        email = order.customer.user.email

    _audit(body["id"], email, ORDER_PLACED, {"total": body["total_amount"], "items": len(body["items"])})
    return jsonify(body), 201


@api.get("/orders/<int:order_id>")
def get_order(order_id: int):
    with SessionLocal() as s:
        order = services.get_order(s, order_id)
        body = _order_json(order)
        body["payment"] = _payment_json(order.payment) if order.payment else None
        body["delivery"] = _delivery_json(order.delivery) if order.delivery else None
    return jsonify(body)


@api.get("/customers/<int:customer_id>/orders")
def list_customer_orders(customer_id: int):
    with SessionLocal() as s:
        return jsonify([_order_json(o) for o in services.list_customer_orders(s, customer_id)])


@api.patch("/orders/<int:order_id>/status")
def update_order_status(order_id: int):
    data = _payload("status")
    with SessionLocal() as s:
        order = services.change_order_status(s, order_id, data["status"])
        s.commit()
        body = _order_json(order)
        email = order.customer.user.email

    _audit(order_id, email, STATUS_CHANGED, {"status": body["status"]})
    return jsonify(body)


# -----------------------
# Payments
# -----------------------
@api.post("/orders/<int:order_id>/payment")
def capture_payment(order_id: int):
    data = _payload("payment_method")
    with SessionLocal() as s:
        payment = services.capture_payment(
            s, order_id, method=data["payment_method"],
            transaction_id=data.get("transaction_id"), amount=data.get("amount"),
        )
        s.commit()
        body = _payment_json(payment)
        email = payment.order.customer.user.email

    _audit(order_id, email, PAYMENT_CAPTURED, {"transaction_id": body["transaction_id"], "amount": body["amount"]})
    return jsonify(body), 201


@api.patch("/payments/<int:payment_id>/status")
def update_payment_status(payment_id: int):
    data = _payload("status")
    with SessionLocal() as s:
        payment = services.change_payment_status(s, payment_id, data["status"])
        s.commit()
        body = _payment_json(payment)
    return jsonify(body)


# -----------------------
# Deliveries
# -----------------------
@api.post("/orders/<int:order_id>/delivery")
def assign_delivery(order_id: int):
    data = _payload()
    eta = data.get("eta_minutes", current_app.config.get("DEFAULT_ETA_MINUTES", 30))
    with SessionLocal() as s:
        delivery = services.assign_delivery(s, order_id, agent_id=data.get("agent_id"), eta_minutes=eta)
        s.commit()
        body = _delivery_json(delivery)
        email = delivery.order.customer.user.email

    _audit(order_id, email, DELIVERY_ASSIGNED, {"agent_id": body["agent_id"]})
    return jsonify(body), 201


@api.patch("/deliveries/<int:delivery_id>/status")
def update_delivery_status(delivery_id: int):
    data = _payload("status")
    with SessionLocal() as s:
        delivery = services.change_delivery_status(s, delivery_id, data["status"])
        s.commit()
        body = _delivery_json(delivery)
    return jsonify(body)


# -----------------------
# Reviews
# -----------------------
@api.get("/restaurants/<int:restaurant_id>/reviews")
def list_reviews(restaurant_id: int):
    with SessionLocal() as s:
        reviews = [_review_json(r) for r in services.list_reviews(s, restaurant_id)]
        rating = services.restaurant_rating(s, restaurant_id)
    return jsonify({"reviews": reviews, "rating": rating})


@api.post("/restaurants/<int:restaurant_id>/reviews")
def submit_review(restaurant_id: int):
    data = _payload("customer_id", "rating")
    with SessionLocal() as s:
        review = services.submit_review(
            s, data["customer_id"], restaurant_id, rating=data["rating"], comment=data.get("comment"),
        )
        s.commit()
        body = _review_json(review)
    return jsonify(body), 201


# -----------------------
# Reports
# -----------------------
@api.post("/reports/daily-sales")
def create_daily_sales_report():
    data = _payload("generated_by")
    with SessionLocal() as s:
        report = services.generate_sales_report(s, data["generated_by"], data.get("date"))
        s.commit()
        body = _report_json(report)

    url = get_secret(
        "DAILY_SUMMARY_FUNCTION_URL",
        use_secret_manager=current_app.config.get("USE_SECRET_MANAGER", False),
    )
    details = body["details"]
    body["summary_sent"] = services.send_daily_summary(
        url, details["date"], details["revenue"], details["order_count"]
    )
    return jsonify(body), 201


@api.get("/reports/<int:report_id>")
def get_report(report_id: int):
    with SessionLocal() as s:
        return jsonify(_report_json(services.get_report(s, report_id)))
