from html import escape
from typing import Dict, List, Optional, Tuple

import resend
from flask import current_app

from helpers import isoformat, normalize_email, to_money


def send_email_via_resend(
    payload: Dict[str, object], api_key: Optional[str]
) -> Tuple[bool, Optional[str]]:
    """Send ``payload`` through Resend. Failures come back as ``(False, reason)``."""
    key = str(api_key or "").strip()
    if not key:
        return False, "Resend API key is not configured."

    recipients = payload.get("to")
    saved_key = getattr(resend, "api_key", None)
    resend.api_key = key
    try:
        result = resend.Emails.send(payload)
    except Exception as exc:
        current_app.logger.warning("Resend delivery to %s failed: %s", recipients, exc)
        return False, str(exc)
    finally:
        resend.api_key = saved_key

    message_id = result.get("id") if isinstance(result, dict) else None
    if not message_id:
        current_app.logger.warning("Resend returned no message id for %s: %s", recipients, result)
        return False, str(result)

    current_app.logger.info("Resend accepted message %s for %s", message_id, recipients)
    return True, None


def summarize_order_items(order) -> List[Dict[str, object]]:
    return [
        {
            "name": item.product_name or "Item",
            "quantity": item.quantity,
            "price": to_money(item.price),
            "line_total": to_money(item.subtotal),
        }
        for item in order.items
    ]


def build_order_email_html(order, items: List[Dict[str, object]], currency: str) -> str:
    rows = "".join(
        "<tr>"
        f"<td style=\"padding:6px 12px\">{escape(str(item['name']))}</td>"
        f"<td style=\"padding:6px 12px;text-align:center\">{item['quantity']}</td>"
        f"<td style=\"padding:6px 12px;text-align:right\">{currency} {item['line_total']:.2f}</td>"
        "</tr>"
        for item in items
    )
    return (
        "<div style=\"font-family:Arial,sans-serif;color:#1f2933\">"
        f"<h2>Thank you for your order {escape(order.order_number)}</h2>"
        "<table style=\"border-collapse:collapse\">"
        f"{rows}"
        "</table>"
        f"<p>Subtotal: {currency} {to_money(order.subtotal):.2f}<br>"
        f"Shipping: {currency} {to_money(order.shipping_cost):.2f}<br>"
        f"<strong>Total: {currency} {to_money(order.total):.2f}</strong></p>"
        "<p>We will let you know as soon as your payment is confirmed.</p>"
        "</div>"
    )


def send_order_confirmation_email(
    order, recipient_email: Optional[str]
) -> Tuple[bool, Optional[str]]:
    normalized_email = normalize_email(recipient_email)
    if not normalized_email:
        return False, "Missing customer email for the order receipt."

    api_key = current_app.config.get("RESEND_API_KEY") or ""
    if not api_key:
        return False, "Resend API key is not configured."

    currency = current_app.config.get("PAYMENT_CURRENCY", "ETB")
    items = summarize_order_items(order)
    item_lines = ", ".join(
        f"{item['name']} x{item['quantity']} ({currency} {item['price']:.2f})" for item in items
    )
    text_body = (
        f"Thank you for your purchase! Order {order.order_number} placed on "
        f"{isoformat(order.created_at) or ''}.\n"
        f"Items: {item_lines}.\n"
        f"Total: {currency} {to_money(order.total):.2f}.\n"
    )
    sender = current_app.config.get("ORDER_EMAIL_SENDER") or "orders@marketplace.local"

    payload: Dict[str, object] = {
        "from": f"Marketplace <{sender}>",
        "to": [normalized_email],
        "subject": f"Order {order.order_number} received",
        "html": build_order_email_html(order, items, currency),
        "text": text_body,
    }

    sent, error = send_email_via_resend(payload, api_key)
    if not sent:
        current_app.logger.warning(
            "Order confirmation email for %s failed: %s", order.order_number, error
        )
    return sent, error
