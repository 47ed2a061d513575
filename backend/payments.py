import json
from decimal import Decimal
from typing import Dict, Optional, Tuple
from uuid import uuid4

import requests
from flask import current_app
from sqlalchemy import select, update

from helpers import parse_money, to_money
from models import Order, Payment, User, db
from orders import OrderNotFound
from wallet import credit_order_sales

CHAPA_DEFAULT_API_URL = "https://api.chapa.co/v1/transaction"
PLACEHOLDER_KEY_MARKERS = ("xxxx", "your_chapa_secret_key")
SUCCESS_STATUSES = ("success",)


class PaymentError(Exception):
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class PaymentConfigurationError(PaymentError):
    status_code = 400


class PaymentGatewayError(PaymentError):
    status_code = 502


class PaymentVerificationError(PaymentError):
    status_code = 400


def get_chapa_secret_key() -> str:
    secret_key = str(current_app.config.get("CHAPA_SECRET_KEY") or "").strip()
    if not secret_key or any(marker in secret_key for marker in PLACEHOLDER_KEY_MARKERS):
        raise PaymentConfigurationError(
            "Chapa API Key is not configured. Please add your CHAPA_SECRET_KEY to the backend .env file."
        )
    return secret_key


def get_chapa_api_url() -> str:
    return str(current_app.config.get("CHAPA_API_URL") or CHAPA_DEFAULT_API_URL).rstrip("/")


def build_tx_ref(order_number: str) -> str:
    return f"tx-{order_number}-{uuid4().hex[:8]}"


def describe_gateway_error(response: Optional[requests.Response]) -> str:
    if response is None:
        return "Payment initialization failed"
    try:
        error_payload = response.json()
    except ValueError:
        return "Payment initialization failed"

    message = error_payload.get("message") if isinstance(error_payload, dict) else None
    if not message:
        return "Payment initialization failed"
    if isinstance(message, str):
        if "Invalid key" in message:
            return "Invalid Chapa API Key. Please check your .env configuration."
        return f"Chapa Error: {message}"
    return f"Chapa Error: {json.dumps(message)}"


def _gateway_headers(secret_key: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {secret_key}",
        "Content-Type": "application/json",
    }


def initialize_transaction(payload: Dict[str, object]) -> Dict[str, object]:
    secret_key = get_chapa_secret_key()
    url = f"{get_chapa_api_url()}/initialize"
    timeout = current_app.config.get("PAYMENT_TIMEOUT_SECONDS", 15)

    try:
        response = requests.post(
            url, json=payload, headers=_gateway_headers(secret_key), timeout=timeout
        )
    except requests.RequestException as exc:
        current_app.logger.error("Chapa initialize request failed: %s", exc)
        raise PaymentGatewayError("Payment initialization failed")

    if not response.ok:
        current_app.logger.error(
            "Chapa initialize rejected (%s): %s", response.status_code, response.text
        )
        raise PaymentGatewayError(describe_gateway_error(response))

    try:
        data = response.json()
    except ValueError:
        raise PaymentGatewayError("Payment initialization failed")
    if not isinstance(data, dict):
        raise PaymentGatewayError("Payment initialization failed")

    checkout_url = (data.get("data") or {}).get("checkout_url")
    if data.get("status") != "success" or not checkout_url:
        raise PaymentVerificationError("Chapa failed to initialize the transaction")
    return data


def verify_transaction(tx_ref: str) -> Dict[str, object]:
    secret_key = get_chapa_secret_key()
    url = f"{get_chapa_api_url()}/verify/{tx_ref}"
    timeout = current_app.config.get("PAYMENT_TIMEOUT_SECONDS", 15)

    try:
        response = requests.get(
            url, headers={"Authorization": f"Bearer {secret_key}"}, timeout=timeout
        )
    except requests.RequestException as exc:
        current_app.logger.error("Chapa verify request failed for %s: %s", tx_ref, exc)
        raise PaymentGatewayError("Payment verification failed")

    if not response.ok:
        current_app.logger.error(
            "Chapa verify rejected %s (%s): %s", tx_ref, response.status_code, response.text
        )
        raise PaymentVerificationError("Payment verification failed")

    try:
        data = response.json()
    except ValueError:
        raise PaymentGatewayError("Payment verification failed")
    if not isinstance(data, dict):
        raise PaymentGatewayError("Payment verification failed")
    return data


def split_customer_name(name: Optional[str]) -> Tuple[str, str]:
    parts = str(name or "").split()
    if not parts:
        return "Customer", "User"
    return parts[0], " ".join(parts[1:]) or "User"


def initialize_payment(order: Order, customer: User) -> Dict[str, object]:
    """Open a Chapa checkout for ``order`` and return its checkout URL."""
    secret_key = get_chapa_secret_key()
    if order.payment_status == "paid":
        raise PaymentVerificationError("This order has already been paid.")

    tx_ref = build_tx_ref(order.order_number)
    first_name, last_name = split_customer_name(customer.name)
    currency = current_app.config.get("PAYMENT_CURRENCY", "ETB")
    api_url = str(current_app.config.get("API_URL") or "http://localhost:5000/api").rstrip("/")
    frontend_url = str(current_app.config.get("FRONTEND_URL") or "http://localhost:5173").rstrip("/")
    callback_url = current_app.config.get("CHAPA_CALLBACK_URL") or f"{api_url}/payment/callback"

    payload = {
        "amount": str(to_money(order.total)),
        "currency": currency,
        "email": customer.email,
        "first_name": first_name,
        "last_name": last_name,
        "tx_ref": tx_ref,
        "callback_url": callback_url,
        "return_url": f"{frontend_url}/payment/success/{order.id}",
        "customization": {
            "title": "Order Payment",
            "description": f"Payment for Order {order.order_number}",
        },
    }

    order.transaction_ref = tx_ref
    payment = Payment(
        order_id=order.id,
        transaction_id=tx_ref,
        payment_method=order.payment_method,
        amount=to_money(order.total),
        currency=currency,
        status="pending",
    )
    db.session.add(payment)
    db.session.commit()

    current_app.logger.info(
        "Initializing Chapa payment for order %s with ref %s (key %s...)",
        order.order_number,
        tx_ref,
        secret_key[:10],
    )
    try:
        data = initialize_transaction(payload)
    except PaymentError as exc:
        payment.status = "failed"
        payment.response_data = {"error": exc.message}
        db.session.commit()
        raise

    payment.response_data = data
    db.session.commit()
    return {"checkout_url": data["data"]["checkout_url"], "tx_ref": tx_ref}


def mark_order_paid(order: Order, verification: Optional[Dict] = None) -> bool:
    """Record a confirmed payment on ``order``. Returns False when it was already paid.

    Only status fields change here; the order totals stay as placed.
    """
    verification = verification or {}
    reference = verification.get("reference") or verification.get("chapa_reference")

    values = {"payment_status": "paid", "status": "processing"}
    if reference:
        values["payment_transaction_id"] = str(reference)

    try:
        # Only the confirmation that flips the row gets to credit sellers.
        claimed = db.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.payment_status != "paid")
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            db.session.rollback()
            return False
        db.session.refresh(order)

        if order.transaction_ref:
            payment = db.session.execute(
                select(Payment).where(Payment.transaction_id == order.transaction_ref)
            ).scalar_one_or_none()
            if payment is not None:
                payment.status = "success"
                payment.chapa_reference = str(reference) if reference else payment.chapa_reference
                payment.response_data = verification or payment.response_data

        credit_order_sales(order)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Order %s marked as paid", order.order_number)
    return True


def confirm_payment(tx_ref: str) -> Tuple[Order, bool]:
    """Verify ``tx_ref`` with Chapa and mark its order paid when the charge succeeded."""
    cleaned_ref = str(tx_ref or "").strip()
    if not cleaned_ref:
        raise PaymentVerificationError("Missing transaction reference")

    response = verify_transaction(cleaned_ref)
    payment_data = response.get("data") if isinstance(response.get("data"), dict) else {}
    charge_status = str(payment_data.get("status") or response.get("status") or "").lower()
    if response.get("status") != "success" or charge_status not in SUCCESS_STATUSES:
        raise PaymentVerificationError("Payment verification failed")

    order = db.session.execute(
        select(Order).where(Order.transaction_ref == cleaned_ref).with_for_update()
    ).scalar_one_or_none()
    if order is None:
        raise OrderNotFound()

    verified_amount = parse_money(payment_data.get("amount"))
    if verified_amount is not None and abs(verified_amount - to_money(order.total)) > Decimal("0.01"):
        current_app.logger.warning(
            "Chapa amount %s does not match order %s total %s",
            verified_amount,
            order.order_number,
            order.total,
        )
        raise PaymentVerificationError("Payment amount does not match the order total.")

    changed = mark_order_paid(order, payment_data)
    return order, changed


def handle_webhook_event(event: Optional[Dict]) -> str:
    event = event if isinstance(event, dict) else {}
    if event.get("event") != "charge.success":
        return "ignored"

    data = event.get("data") if isinstance(event.get("data"), dict) else {}
    tx_ref = data.get("tx_ref") or event.get("tx_ref")
    if not tx_ref:
        current_app.logger.warning("Chapa webhook without tx_ref ignored")
        return "ignored"

    # The webhook body is not trusted; the gateway is asked for the charge status.
    _, changed = confirm_payment(tx_ref)
    return "ok" if changed else "already_paid"
