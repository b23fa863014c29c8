"""Payment confirmation through the verify endpoint and the signed webhook."""
import hashlib
import hmac
import json

import pytest

from store_service.config import PAYSTACK_SECRET_KEY
from store_service.models import Order
from store_service.services.order_service import OrderService
from store_service.services.payment_provider import PaymentProviderClient

from conftest import make_order


def _sign(body: bytes) -> str:
    return hmac.new(PAYSTACK_SECRET_KEY.encode("utf-8"), body, hashlib.sha512).hexdigest()


def _post_webhook(client, event, signature=None):
    body = json.dumps(event).encode("utf-8")
    return client.post(
        "/api/orders/webhook",
        content=body,
        headers={
            "Content-Type": "application/json",
            "x-paystack-signature": signature if signature is not None else _sign(body),
        },
    )


@pytest.fixture
def pending_order(db, regular_user, product):
    return make_order(db, regular_user, product, quantity=2, reference="order_1_1700000000000")


def test_verify_payment_confirms_order(client, db, paystack, pending_order, product):
    response = client.get("/api/orders/verify-payment", params={"reference": "order_1_1700000000000"})

    assert response.status_code == 200
    order = response.json()["data"]["order"]
    assert order["status"] == "processing"
    assert order["payment_status"] == "paid"
    assert order["payment_details"]["transaction_id"] == "4099260516"
    assert order["payment_details"]["payment_date"] is not None

    [verify] = paystack.requests_to("/transaction/verify/order_1_1700000000000")
    assert verify.method == "GET"

    db.refresh(product)
    assert product.quantity == 8


def test_verify_payment_unsuccessful(client, db, paystack, pending_order, product):
    paystack.verify_status = "abandoned"

    response = client.get("/api/orders/verify-payment", params={"reference": "order_1_1700000000000"})

    assert response.status_code == 400
    assert response.json()["message"] == "Payment was not successful"
    db.refresh(pending_order)
    db.refresh(product)
    assert pending_order.payment_status == "pending"
    assert product.quantity == 10


def test_verify_payment_unknown_reference(client):
    response = client.get("/api/orders/verify-payment", params={"reference": "order_missing"})

    assert response.status_code == 404
    assert response.json()["message"] == "Order not found"


def test_verify_payment_requires_reference(client):
    response = client.get("/api/orders/verify-payment")

    assert response.status_code == 400


def test_webhook_charge_success(client, db, pending_order, product):
    response = _post_webhook(client, {
        "event": "charge.success",
        "data": {"id": 555, "reference": "order_1_1700000000000", "status": "success"},
    })

    assert response.status_code == 200
    assert response.json() == {"received": True}

    db.refresh(pending_order)
    db.refresh(product)
    assert pending_order.payment_status == "paid"
    assert pending_order.status == "processing"
    assert pending_order.payment_transaction_id == "555"
    assert product.quantity == 8


def test_webhook_replay_decrements_stock_again(client, db, pending_order, product):
    event = {"event": "charge.success", "data": {"id": 555, "reference": "order_1_1700000000000"}}

    _post_webhook(client, event)
    _post_webhook(client, event)

    db.refresh(product)
    assert product.quantity == 6


def test_verify_then_webhook_both_decrement(client, db, pending_order, product):
    client.get("/api/orders/verify-payment", params={"reference": "order_1_1700000000000"})
    _post_webhook(client, {"event": "charge.success", "data": {"id": 555, "reference": "order_1_1700000000000"}})

    db.refresh(product)
    assert product.quantity == 6


def test_webhook_rejects_bad_signature(client, db, pending_order, product):
    response = _post_webhook(
        client,
        {"event": "charge.success", "data": {"reference": "order_1_1700000000000"}},
        signature="0" * 128,
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid webhook signature"
    db.refresh(pending_order)
    db.refresh(product)
    assert pending_order.payment_status == "pending"
    assert product.quantity == 10


def test_webhook_rejects_missing_signature(client, pending_order):
    response = client.post("/api/orders/webhook", content=b'{"event": "charge.success"}')

    assert response.status_code == 400


def test_webhook_charge_failed(client, db, pending_order, product):
    response = _post_webhook(client, {
        "event": "charge.failed",
        "data": {"reference": "order_1_1700000000000"},
    })

    assert response.status_code == 200
    db.refresh(pending_order)
    db.refresh(product)
    assert pending_order.payment_status == "failed"
    assert pending_order.status == "pending"
    assert product.quantity == 10


@pytest.mark.parametrize("event", [
    {"event": "charge.success", "data": {"reference": "order_unknown"}},
    {"event": "transfer.success", "data": {"reference": "order_1_1700000000000"}},
])
def test_webhook_acknowledges_events_it_does_not_apply(client, db, pending_order, event):
    response = _post_webhook(client, event)

    assert response.status_code == 200
    assert response.json() == {"received": True}
    db.refresh(pending_order)
    assert pending_order.payment_status == "pending"


def test_webhook_acknowledges_malformed_body(client, db):
    body = b"not json"

    response = client.post(
        "/api/orders/webhook",
        content=body,
        headers={"x-paystack-signature": _sign(body)},
    )

    assert response.status_code == 200
    assert db.query(Order).count() == 0


def test_full_checkout_flow(client, db, paystack, user_headers, product):
    created = client.post("/api/orders", headers=user_headers, json={
        "products": [{"product_id": product.id, "quantity": 3}],
        "shipping_address": {
            "street": "1 Market Rd",
            "city": "Lagos",
            "state": "Lagos",
            "zip_code": "100001",
            "country": "Nigeria",
        },
    })
    assert created.status_code == 201
    reference = created.json()["data"]["order"]["payment_details"]["reference"]

    db.refresh(product)
    assert product.quantity == 10

    verified = client.get("/api/orders/verify-payment", params={"reference": reference})
    assert verified.status_code == 200

    db.refresh(product)
    assert product.quantity == 7


def test_webhook_rejects_non_ascii_signature(client, db, pending_order, product):
    body = json.dumps({"event": "charge.success", "data": {"reference": "order_1_1700000000000"}}).encode("utf-8")

    response = client.post(
        "/api/orders/webhook",
        content=body,
        headers={"x-paystack-signature": "é".encode("utf-8")},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid webhook signature"
    db.refresh(product)
    assert product.quantity == 10


@pytest.mark.parametrize("event_type", ["charge.success", "charge.failed"])
def test_webhook_without_reference_leaves_orders_untouched(client, db, regular_user, product, event_type):
    # Order whose checkout never started, so it carries no reference
    unstarted = make_order(db, regular_user, product, quantity=2, reference=None)

    response = _post_webhook(client, {"event": event_type, "data": {"id": 1}})

    assert response.status_code == 200
    assert response.json() == {"received": True}
    db.refresh(unstarted)
    db.refresh(product)
    assert unstarted.payment_status == "pending"
    assert unstarted.status == "pending"
    assert product.quantity == 10


def test_find_by_reference_ignores_missing_reference(db, regular_user, product):
    make_order(db, regular_user, product, reference=None)
    service = OrderService(PaymentProviderClient(http_client=None))

    assert service.find_by_reference(db, None) is None
    assert service.find_by_reference(db, "") is None


def test_verify_payment_non_json_provider_reply(client, db, paystack, pending_order, product):
    paystack.malformed_body = True

    response = client.get("/api/orders/verify-payment", params={"reference": "order_1_1700000000000"})

    assert response.status_code == 502
    assert response.json() == {"status": "error", "message": "Payment service unavailable"}
    db.refresh(product)
    assert product.quantity == 10


def test_create_order_non_json_provider_reply(client, db, paystack, user_headers, product):
    paystack.malformed_body = True

    response = client.post("/api/orders", headers=user_headers, json={
        "products": [{"product_id": product.id, "quantity": 1}],
        "shipping_address": {
            "street": "1 Market Rd",
            "city": "Lagos",
            "state": "Lagos",
            "zip_code": "100001",
            "country": "Nigeria",
        },
    })

    assert response.status_code == 502
    order = db.query(Order).one()
    assert order.status == "pending"
    assert order.payment_authorization_url is None
