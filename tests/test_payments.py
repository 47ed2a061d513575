import threading
from decimal import Decimal

import pytest
import requests

import payments
from models import Order, Payment, SellerWallet, WalletTransaction, db
from orders import place_order


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.text = str(payload)

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        return self._payload


@pytest.fixture
def placed_order(app, customer, seller, make_product, shipping_address):
    first = make_product(seller, name="Jebena", price="120.00", stock=5)
    second = make_product(seller, name="Scarf", price="90.00", discount_price="60.00", stock=5)
    with app.app_context():
        order = place_order(
            customer,
            shipping_address,
            "chapa",
            [{"productId": first, "quantity": 1}, {"productId": second, "quantity": 2}],
        )
        return order.id


@pytest.fixture
def gateway(monkeypatch):
    calls = {"post": [], "get": []}
    state = {"amount": "290.00", "status": "success"}

    def fake_post(url, json=None, headers=None, timeout=None):
        calls["post"].append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return FakeResponse(
            {
                "status": "success",
                "message": "Hosted Link",
                "data": {"checkout_url": "https://checkout.chapa.test/pay/abc"},
            }
        )

    def fake_get(url, headers=None, timeout=None):
        calls["get"].append({"url": url, "headers": headers})
        return FakeResponse(
            {
                "status": "success",
                "data": {
                    "status": state["status"],
                    "amount": state["amount"],
                    "reference": "CHAPA-REF-1",
                },
            }
        )

    monkeypatch.setattr(payments.requests, "post", fake_post)
    monkeypatch.setattr(payments.requests, "get", fake_get)
    return {"calls": calls, "state": state}


def initialize(client, auth_headers, customer, order_id):
    return client.post(
        "/api/payment/initialize", json={"orderId": order_id}, headers=auth_headers(customer)
    )


def test_initialize_payment_returns_checkout_url(
    app, client, customer, auth_headers, placed_order, gateway
):
    response = initialize(client, auth_headers, customer, placed_order)

    assert response.status_code == 200
    body = response.get_json()
    assert body["checkout_url"] == "https://checkout.chapa.test/pay/abc"

    request_sent = gateway["calls"]["post"][0]
    assert request_sent["url"] == "https://chapa.test/v1/transaction/initialize"
    assert request_sent["json"]["amount"] == "290.00"
    assert request_sent["json"]["tx_ref"] == body["tx_ref"]
    assert request_sent["headers"]["Authorization"] == "Bearer CHASECK_TEST-abc123def456"
    assert request_sent["timeout"] == 15

    with app.app_context():
        order = db.session.get(Order, placed_order)
        assert order.transaction_ref == body["tx_ref"]
        payment = db.session.query(Payment).filter_by(transaction_id=body["tx_ref"]).one()
        assert payment.status == "pending"
        assert payment.amount == Decimal("290.00")


def test_initialize_payment_for_someone_elses_order(
    client, make_user, auth_headers, placed_order, gateway
):
    stranger = make_user("stranger@example.com")
    response = initialize(client, auth_headers, stranger, placed_order)
    assert response.status_code == 404
    assert gateway["calls"]["post"] == []


def test_initialize_payment_without_configured_key(
    app, client, customer, auth_headers, placed_order, gateway
):
    app.config["CHAPA_SECRET_KEY"] = "CHASECK_TEST-xxxxxxxxxxxx"
    response = initialize(client, auth_headers, customer, placed_order)
    assert response.status_code == 400
    assert "CHAPA_SECRET_KEY" in response.get_json()["message"]
    assert gateway["calls"]["post"] == []


def test_gateway_rejection_marks_payment_failed(
    app, client, customer, auth_headers, placed_order, monkeypatch
):
    def rejecting_post(url, json=None, headers=None, timeout=None):
        return FakeResponse({"status": "failed", "message": "Invalid key"}, status_code=401)

    monkeypatch.setattr(payments.requests, "post", rejecting_post)

    response = initialize(client, auth_headers, customer, placed_order)

    assert response.status_code == 502
    assert response.get_json()["message"] == "Invalid Chapa API Key. Please check your .env configuration."
    with app.app_context():
        assert db.session.query(Payment).one().status == "failed"


def test_gateway_timeout_is_reported(app, client, customer, auth_headers, placed_order, monkeypatch):
    def timing_out_post(url, json=None, headers=None, timeout=None):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(payments.requests, "post", timing_out_post)

    response = initialize(client, auth_headers, customer, placed_order)
    assert response.status_code == 502


def test_verify_marks_order_paid_and_credits_seller_once(
    app, client, customer, seller, auth_headers, placed_order, gateway
):
    tx_ref = initialize(client, auth_headers, customer, placed_order).get_json()["tx_ref"]

    first = client.get(f"/api/payment/verify/{tx_ref}")
    assert first.status_code == 200
    assert first.get_json()["message"] == "Payment verified successfully"
    assert first.get_json()["data"]["payment_status"] == "paid"

    second = client.get(f"/api/payment/verify/{tx_ref}")
    assert second.status_code == 200
    assert second.get_json()["message"] == "Payment was already verified"

    with app.app_context():
        order = db.session.get(Order, placed_order)
        assert order.payment_status == "paid"
        assert order.status == "processing"
        assert order.payment_transaction_id == "CHAPA-REF-1"
        assert order.total == Decimal("290.00")

        wallet = db.session.query(SellerWallet).filter_by(seller_id=seller).one()
        assert wallet.balance == Decimal("240.00")
        assert wallet.total_earned == Decimal("240.00")
        credits = db.session.query(WalletTransaction).filter_by(seller_id=seller).all()
        assert len(credits) == 1
        assert credits[0].type == "credit"

        assert db.session.query(Payment).one().status == "success"


def test_verify_rejects_amount_mismatch(app, client, customer, auth_headers, placed_order, gateway):
    tx_ref = initialize(client, auth_headers, customer, placed_order).get_json()["tx_ref"]
    gateway["state"]["amount"] = "10.00"

    response = client.get(f"/api/payment/verify/{tx_ref}")

    assert response.status_code == 400
    with app.app_context():
        assert db.session.get(Order, placed_order).payment_status == "pending"


def test_verify_failed_charge(app, client, customer, auth_headers, placed_order, gateway):
    tx_ref = initialize(client, auth_headers, customer, placed_order).get_json()["tx_ref"]
    gateway["state"]["status"] = "failed"

    response = client.get(f"/api/payment/verify/{tx_ref}")

    assert response.status_code == 400
    assert response.get_json()["message"] == "Payment verification failed"


def test_verify_unknown_reference(client, gateway):
    response = client.get("/api/payment/verify/tx-unknown")
    assert response.status_code == 404


def test_webhook_confirms_payment_through_gateway(
    app, client, customer, auth_headers, placed_order, gateway
):
    tx_ref = initialize(client, auth_headers, customer, placed_order).get_json()["tx_ref"]

    ignored = client.post("/api/payment/callback", json={"event": "charge.refunded"})
    assert ignored.get_json() == {"status": "ignored"}

    first = client.post(
        "/api/payment/callback", json={"event": "charge.success", "data": {"tx_ref": tx_ref}}
    )
    assert first.get_json() == {"status": "ok"}
    assert gateway["calls"]["get"][0]["url"].endswith(f"/verify/{tx_ref}")

    replay = client.post("/api/payment/callback", json={"event": "charge.success", "tx_ref": tx_ref})
    assert replay.get_json() == {"status": "already_paid"}

    with app.app_context():
        assert db.session.get(Order, placed_order).payment_status == "paid"


def test_paid_order_cannot_be_initialized_again(
    client, customer, auth_headers, placed_order, gateway
):
    tx_ref = initialize(client, auth_headers, customer, placed_order).get_json()["tx_ref"]
    client.get(f"/api/payment/verify/{tx_ref}")

    response = initialize(client, auth_headers, customer, placed_order)
    assert response.status_code == 400
    assert len(gateway["calls"]["post"]) == 1


def test_stale_order_is_not_paid_twice(app, seller, placed_order):
    with app.app_context():
        stale = db.session.get(Order, placed_order)
        assert stale.payment_status == "pending"

        paid_elsewhere = []

        def pay_in_other_session():
            with app.app_context():
                try:
                    paid_elsewhere.append(
                        payments.mark_order_paid(db.session.get(Order, placed_order))
                    )
                finally:
                    db.session.remove()

        worker = threading.Thread(target=pay_in_other_session)
        worker.start()
        worker.join()
        assert paid_elsewhere == [True]

        assert payments.mark_order_paid(stale, {"reference": "CHAPA-REF-2"}) is False
        assert stale.payment_transaction_id is None

        wallet = db.session.query(SellerWallet).filter_by(seller_id=seller).one()
        assert wallet.balance == Decimal("240.00")
        assert db.session.query(WalletTransaction).filter_by(seller_id=seller).count() == 1


def test_concurrent_confirmations_credit_seller_once(
    app, client, customer, seller, auth_headers, placed_order, gateway
):
    tx_ref = initialize(client, auth_headers, customer, placed_order).get_json()["tx_ref"]
    attempts = 4
    outcomes = []
    outcomes_lock = threading.Lock()
    start = threading.Barrier(attempts)

    def confirm():
        with app.app_context():
            start.wait()
            try:
                _, changed = payments.confirm_payment(tx_ref)
                result = "paid" if changed else "already_paid"
            finally:
                db.session.remove()
        with outcomes_lock:
            outcomes.append(result)

    workers = [threading.Thread(target=confirm) for _ in range(attempts)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert outcomes.count("paid") == 1
    assert outcomes.count("already_paid") == attempts - 1

    with app.app_context():
        order = db.session.get(Order, placed_order)
        assert order.payment_status == "paid"
        assert order.status == "processing"
        wallet = db.session.query(SellerWallet).filter_by(seller_id=seller).one()
        assert wallet.balance == Decimal("240.00")
        assert wallet.total_earned == Decimal("240.00")
        credits = db.session.query(WalletTransaction).filter_by(seller_id=seller, type="credit")
        assert credits.count() == 1
        assert db.session.query(Payment).one().status == "success"
