import re
import secrets
import time
import unicodedata
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional
from uuid import uuid4

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

CENT = Decimal("0.01")


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: Optional[str]) -> bool:
    normalized = normalize_email(value)
    return bool(normalized and email_regex.match(normalized))


def safe_positive_int(value, default=0):
    try:
        numeric = int(float(value))
    except (TypeError, ValueError):
        return default
    return max(default, numeric)


def parse_int(value) -> Optional[int]:
    """Parse an integer identifier, rejecting floats with a fraction and booleans."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    candidate = str(value).strip()
    if not re.fullmatch(r"[+-]?\d+", candidate):
        return None
    return int(candidate)


def parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def parse_money(value) -> Optional[Decimal]:
    """Convert user input into a two-decimal amount, or None when it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(CENT)


def to_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT)


def money_to_float(value) -> Optional[float]:
    if value is None:
        return None
    return float(to_money(value))


def slugify(value: Optional[str]) -> str:
    condensed = " ".join(str(value or "").split()).lower()
    ascii_name = (
        unicodedata.normalize("NFKD", condensed).encode("ascii", "ignore").decode("ascii")
    )
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_name).strip("-")
    if not slug:
        slug = uuid4().hex[:12]
    return slug


def generate_order_number() -> str:
    timestamp = int(time.time() * 1000)
    return f"ORD{timestamp}{secrets.randbelow(1000000):06d}"


def generate_sku(product_name: str) -> str:
    letters = re.sub(r"[^A-Za-z0-9]", "", product_name or "")
    prefix = (letters[:3] or "PRD").upper()
    timestamp = str(int(time.time() * 1000))[-6:]
    return f"{prefix}{timestamp}{secrets.randbelow(1000):03d}"


def calculate_discount_percent(price, discount_price) -> int:
    if price is None or discount_price is None:
        return 0
    price_value = to_money(price)
    discount_value = to_money(discount_price)
    if price_value <= 0 or discount_value >= price_value:
        return 0
    return int(((price_value - discount_value) / price_value * 100).quantize(Decimal("1")))


def isoformat(value: Optional[datetime]) -> Optional[str]:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is not None:
        return value.isoformat()
    return f"{value.isoformat()}Z"
