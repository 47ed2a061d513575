import logging

import mailer
from orders import place_order


def test_confirmation_email_is_skipped_without_api_key(app, customer, seller, make_product, shipping_address):
    product_id = make_product(seller)
    with app.app_context():
        order = place_order(
            customer, shipping_address, "chapa", [{"productId": product_id, "quantity": 1}]
        )
        sent, error = mailer.send_order_confirmation_email(order, "customer@example.com")

    assert sent is False
    assert error == "Resend API key is not configured."


def test_confirmation_email_goes_through_resend(
    app, client, customer, seller, make_product, auth_headers, shipping_address, monkeypatch
):
    sent_payloads = []

    def fake_send(payload):
        sent_payloads.append(payload)
        return {"id": "email-123"}

    monkeypatch.setattr(mailer.resend.Emails, "send", fake_send)
    app.config["RESEND_API_KEY"] = "re_test_key"
    product_id = make_product(seller, name="Clay Pot", price="75.00")

    response = client.post(
        "/api/orders",
        json={
            "shippingAddress": shipping_address,
            "paymentMethod": "chapa",
            "items": [{"productId": product_id, "quantity": 2}],
        },
        headers=auth_headers(customer),
    )

    assert response.get_json()["email_sent"] is True
    payload = sent_payloads[0]
    assert payload["to"] == ["customer@example.com"]
    assert response.get_json()["orderNumber"] in payload["subject"]
    assert "Clay Pot x2" in payload["text"]
    assert "ETB 200.00" in payload["html"]


def test_resend_failure_is_reported_and_logged(app, monkeypatch, caplog):
    def failing_send(payload):
        raise RuntimeError("rate limited")

    monkeypatch.setattr(mailer.resend.Emails, "send", failing_send)
    monkeypatch.setattr(mailer.resend, "api_key", "re_previous")

    with app.app_context(), caplog.at_level(logging.WARNING):
        sent, error = mailer.send_email_via_resend({"to": ["x@example.com"]}, "re_test_key")

    assert sent is False
    assert error == "rate limited"
    assert mailer.resend.api_key == "re_previous"
    assert any(
        "Resend delivery" in record.getMessage() and "rate limited" in record.getMessage()
        for record in caplog.records
    )


def test_resend_response_without_id_is_a_failure(app, monkeypatch, caplog):
    monkeypatch.setattr(mailer.resend.Emails, "send", lambda payload: {"error": "bad sender"})

    with app.app_context(), caplog.at_level(logging.WARNING):
        sent, error = mailer.send_email_via_resend({"to": ["x@example.com"]}, "re_test_key")

    assert sent is False
    assert "bad sender" in error
    assert any("no message id" in record.getMessage() for record in caplog.records)
