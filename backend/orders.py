from decimal import Decimal
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy import delete, select, update
from sqlalchemy.orm import selectinload

from helpers import generate_order_number, parse_int, to_money
from models import (
    ORDER_STATUSES,
    Address,
    CartItem,
    Order,
    OrderItem,
    Product,
    ProductImage,
    db,
)

ADDRESS_FIELD_ALIASES = {
    "full_name": ("fullName", "full_name", "name"),
    "phone": ("phone",),
    "address_line": ("addressLine", "address_line", "line1"),
    "city": ("city",),
    "state": ("state",),
    "postal_code": ("postalCode", "postal_code", "postcode"),
    "country": ("country",),
}
ADDRESS_REQUIRED_FIELDS = ("full_name", "phone", "address_line", "city")
ADDRESS_FIELD_LABELS = {
    "full_name": "full name",
    "phone": "phone",
    "address_line": "address line",
    "city": "city",
}
MAX_PAYMENT_METHOD_LENGTH = 50


class OrderError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class OrderValidationError(OrderError):
    status_code = 400


class ProductNotFound(OrderError):
    status_code = 404

    def __init__(self, product_id: int):
        super().__init__(f"Product with ID {product_id} not found")
        self.product_id = product_id


class OutOfStock(OrderError):
    status_code = 409

    def __init__(self, product_id: int, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for product {product_id}. "
            f"Available: {available}, Requested: {requested}"
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class OrderNotFound(OrderError):
    status_code = 404

    def __init__(self, message: str = "Order not found"):
        super().__init__(message)


def normalize_address_payload(payload: Optional[Dict]) -> Dict[str, str]:
    if not isinstance(payload, dict):
        return {}

    normalized: Dict[str, str] = {}
    for field, aliases in ADDRESS_FIELD_ALIASES.items():
        value = None
        for alias in aliases:
            if alias in payload:
                value = payload.get(alias)
                break
        if value is None:
            continue
        trimmed = str(value).strip()
        if trimmed:
            normalized[field] = trimmed
    return normalized


def normalize_order_lines(raw_items) -> List[Dict[str, int]]:
    if not isinstance(raw_items, list) or not raw_items:
        raise OrderValidationError("Include at least one item to place an order.")

    lines: List[Dict[str, int]] = []
    for entry in raw_items:
        if not isinstance(entry, dict):
            raise OrderValidationError("Each order item must include a productId and quantity.")
        product_id = parse_int(
            entry.get("productId") if "productId" in entry else entry.get("product_id")
        )
        if product_id is None or product_id <= 0:
            raise OrderValidationError("Each order item needs a valid productId.")
        quantity = parse_int(entry.get("quantity"))
        if quantity is None or quantity <= 0:
            raise OrderValidationError(
                f"Quantity for product {product_id} must be a positive whole number."
            )
        lines.append({"product_id": product_id, "quantity": quantity})
    return lines


def _lock_products(product_ids: List[int]) -> Dict[int, Product]:
    # Ascending id order keeps concurrent lockers from deadlocking each other.
    statement = (
        select(Product)
        .where(Product.id.in_(product_ids))
        .order_by(Product.id)
        .with_for_update()
    )
    return {product.id: product for product in db.session.execute(statement).scalars()}


def _decrement_stock(product: Product, quantity: int):
    result = db.session.execute(
        update(Product)
        .where(Product.id == product.id, Product.stock_quantity >= quantity)
        .values(
            stock_quantity=Product.stock_quantity - quantity,
            sales_count=Product.sales_count + quantity,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        available = db.session.execute(
            select(Product.stock_quantity).where(Product.id == product.id)
        ).scalar()
        raise OutOfStock(product.id, int(available or 0), quantity)


def place_order(
    customer_id: int,
    shipping_address: Optional[Dict],
    payment_method: Optional[str],
    items,
) -> Order:
    """Place an order for ``customer_id`` in a single transaction.

    Stock is checked against the locked product rows, every line is priced at
    ``discount_price`` when present (``price`` otherwise), and a fixed shipping
    surcharge is added. The order, its items, the stock decrements and the
    removal of the customer's cart either all commit or all roll back.
    """
    address_fields = normalize_address_payload(shipping_address)
    missing = [field for field in ADDRESS_REQUIRED_FIELDS if not address_fields.get(field)]
    if missing:
        labels = ", ".join(ADDRESS_FIELD_LABELS[field] for field in missing)
        raise OrderValidationError(f"Shipping address is missing: {labels}.")

    normalized_method = str(payment_method or "").strip()
    if not normalized_method:
        raise OrderValidationError("A payment method is required.")
    if len(normalized_method) > MAX_PAYMENT_METHOD_LENGTH:
        raise OrderValidationError("Payment method is not recognised.")

    lines = normalize_order_lines(items)
    shipping_cost = to_money(current_app.config["SHIPPING_COST"])

    requested: Dict[int, int] = {}
    for line in lines:
        requested[line["product_id"]] = requested.get(line["product_id"], 0) + line["quantity"]

    try:
        products = _lock_products(sorted(requested))

        subtotal = Decimal("0.00")
        for product_id, quantity in requested.items():
            product = products.get(product_id)
            if product is None or not product.is_active:
                raise ProductNotFound(product_id)
            if product.stock_quantity < quantity:
                raise OutOfStock(product_id, product.stock_quantity, quantity)
            subtotal += to_money(product.effective_price) * quantity

        address = Address(user_id=customer_id, **address_fields)
        db.session.add(address)
        db.session.flush()

        order = Order(
            order_number=generate_order_number(),
            customer_id=customer_id,
            shipping_address_id=address.id,
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            tax=Decimal("0.00"),
            total=subtotal + shipping_cost,
            payment_method=normalized_method,
            payment_status="pending",
            status="pending",
        )
        db.session.add(order)
        db.session.flush()

        for line in lines:
            product = products[line["product_id"]]
            unit_price = to_money(product.effective_price)
            db.session.add(
                OrderItem(
                    order_id=order.id,
                    product_id=product.id,
                    seller_id=product.seller_id,
                    product_name=product.name,
                    sku=product.sku,
                    quantity=line["quantity"],
                    price=unit_price,
                    discount_price=product.discount_price,
                    subtotal=unit_price * line["quantity"],
                )
            )
            _decrement_stock(product, line["quantity"])

        db.session.execute(
            delete(CartItem)
            .where(CartItem.user_id == customer_id)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Order %s placed by customer %s (total %s)",
        order.order_number,
        customer_id,
        order.total,
    )
    return order


def list_customer_orders(customer_id: int) -> List[Order]:
    statement = (
        select(Order)
        .where(Order.customer_id == customer_id)
        .options(selectinload(Order.shipping_address), selectinload(Order.items))
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    return list(db.session.execute(statement).scalars())


def get_customer_order(customer_id: int, order_id: int) -> Optional[Order]:
    statement = (
        select(Order)
        .where(Order.id == order_id, Order.customer_id == customer_id)
        .options(selectinload(Order.shipping_address), selectinload(Order.items))
    )
    return db.session.execute(statement).scalar_one_or_none()


def primary_images_for(product_ids) -> Dict[int, str]:
    ids = sorted({product_id for product_id in product_ids if product_id})
    if not ids:
        return {}
    statement = (
        select(ProductImage.product_id, ProductImage.image_url)
        .where(ProductImage.product_id.in_(ids), ProductImage.is_primary.is_(True))
        .order_by(ProductImage.display_order, ProductImage.id)
    )
    images: Dict[int, str] = {}
    for product_id, image_url in db.session.execute(statement):
        images.setdefault(product_id, image_url)
    return images


def list_seller_order_lines(seller_id: int):
    statement = (
        select(OrderItem, Order, Address.full_name)
        .join(Order, OrderItem.order_id == Order.id)
        .join(Address, Order.shipping_address_id == Address.id)
        .where(OrderItem.seller_id == seller_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    return list(db.session.execute(statement))


def list_recent_orders(limit: int = 100) -> List[Order]:
    statement = (
        select(Order)
        .options(selectinload(Order.customer), selectinload(Order.items))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
    )
    return list(db.session.execute(statement).scalars())


def update_order_status(order_id: int, status: Optional[str]) -> Order:
    normalized_status = str(status or "").strip().lower()
    if normalized_status not in ORDER_STATUSES:
        raise OrderValidationError(
            "Status must be one of: " + ", ".join(ORDER_STATUSES) + "."
        )

    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound()

    order.status = normalized_status
    db.session.commit()
    return order

