import threading
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from models import Address, CartItem, ImmutableFieldError, Order, OrderItem, Product, db
from orders import OrderValidationError, OutOfStock, ProductNotFound, place_order


def count_rows(model):
    return db.session.execute(select(func.count()).select_from(model)).scalar()


def test_place_order_happy_path(app, client, customer, seller, make_product, auth_headers, shipping_address):
    plain = make_product(seller, name="Coffee Beans", price="100.00", stock=10)
    discounted = make_product(
        seller, name="Mesob Basket", price="200.00", discount_price="150.00", stock=5
    )

    response = client.post(
        "/api/orders",
        json={
            "shippingAddress": shipping_address,
            "paymentMethod": "chapa",
            "items": [
                {"productId": plain, "quantity": 2},
                {"productId": discounted, "quantity": 1},
            ],
        },
        headers=auth_headers(customer),
    )

    assert response.status_code == 201
    body = response.get_json()
    assert body["orderNumber"].startswith("ORD")
    assert body["email_sent"] is False

    with app.app_context():
        order = db.session.get(Order, body["orderId"])
        assert order.subtotal == Decimal("350.00")
        assert order.shipping_cost == Decimal("50.00")
        assert order.tax == Decimal("0.00")
        assert order.total == Decimal("400.00")
        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.shipping_address.city == "Addis Ababa"

        items = {item.product_id: item for item in order.items}
        assert items[plain].price == Decimal("100.00")
        assert items[plain].subtotal == Decimal("200.00")
        assert items[discounted].price == Decimal("150.00")
        assert items[discounted].discount_price == Decimal("150.00")
        assert items[discounted].seller_id == seller

        assert db.session.get(Product, plain).stock_quantity == 8
        assert db.session.get(Product, plain).sales_count == 2
        assert db.session.get(Product, discounted).stock_quantity == 4


def test_place_order_clears_customer_cart(app, customer, seller, make_product, shipping_address):
    product_id = make_product(seller, stock=3)
    with app.app_context():
        db.session.add(CartItem(user_id=customer, product_id=product_id, quantity=1))
        db.session.commit()

        place_order(customer, shipping_address, "chapa", [{"productId": product_id, "quantity": 1}])

        assert count_rows(CartItem) == 0


def test_insufficient_stock_leaves_no_side_effects(
    app, client, customer, seller, make_product, auth_headers, shipping_address
):
    in_stock = make_product(seller, name="Plenty", stock=10)
    scarce = make_product(seller, name="Scarce", stock=1)
    with app.app_context():
        db.session.add(CartItem(user_id=customer, product_id=in_stock, quantity=1))
        db.session.commit()

    response = client.post(
        "/api/orders",
        json={
            "shippingAddress": shipping_address,
            "paymentMethod": "chapa",
            "items": [
                {"productId": in_stock, "quantity": 3},
                {"productId": scarce, "quantity": 2},
            ],
        },
        headers=auth_headers(customer),
    )

    assert response.status_code == 409
    assert "Available: 1, Requested: 2" in response.get_json()["message"]

    with app.app_context():
        assert count_rows(Order) == 0
        assert count_rows(OrderItem) == 0
        assert count_rows(Address) == 0
        assert count_rows(CartItem) == 1
        assert db.session.get(Product, in_stock).stock_quantity == 10
        assert db.session.get(Product, scarce).stock_quantity == 1


def test_duplicate_lines_are_checked_against_combined_quantity(
    app, customer, seller, make_product, shipping_address
):
    product_id = make_product(seller, stock=3)
    with app.app_context():
        with pytest.raises(OutOfStock) as excinfo:
            place_order(
                customer,
                shipping_address,
                "chapa",
                [
                    {"productId": product_id, "quantity": 2},
                    {"productId": product_id, "quantity": 2},
                ],
            )
        assert excinfo.value.requested == 4
        assert db.session.get(Product, product_id).stock_quantity == 3


def test_unknown_and_inactive_products_are_not_found(
    app, client, customer, seller, make_product, auth_headers, shipping_address
):
    hidden = make_product(seller, stock=5, is_active=False)

    response = client.post(
        "/api/orders",
        json={
            "shippingAddress": shipping_address,
            "paymentMethod": "chapa",
            "items": [{"productId": 9999, "quantity": 1}],
        },
        headers=auth_headers(customer),
    )
    assert response.status_code == 404
    assert response.get_json()["message"] == "Product with ID 9999 not found"

    with app.app_context():
        with pytest.raises(ProductNotFound):
            place_order(customer, shipping_address, "chapa", [{"productId": hidden, "quantity": 1}])
        assert db.session.get(Product, hidden).stock_quantity == 5


@pytest.mark.parametrize(
    "items",
    [
        [],
        None,
        [{"productId": 1, "quantity": 0}],
        [{"productId": 1, "quantity": -2}],
        [{"productId": "abc", "quantity": 1}],
        [{"quantity": 1}],
    ],
)
def test_invalid_items_are_rejected(app, customer, shipping_address, items):
    with app.app_context():
        with pytest.raises(OrderValidationError):
            place_order(customer, shipping_address, "chapa", items)
        assert count_rows(Order) == 0


def test_missing_shipping_fields_are_rejected(client, customer, seller, make_product, auth_headers):
    product_id = make_product(seller)

    response = client.post(
        "/api/orders",
        json={
            "shippingAddress": {"fullName": "Abebe Kebede", "city": "Addis Ababa"},
            "paymentMethod": "chapa",
            "items": [{"productId": product_id, "quantity": 1}],
        },
        headers=auth_headers(customer),
    )

    assert response.status_code == 400
    assert "phone" in response.get_json()["message"]


def test_order_requires_authentication(client):
    response = client.post("/api/orders", json={})
    assert response.status_code == 401


def test_concurrent_orders_do_not_oversell(app, customer, seller, make_product, shipping_address):
    product_id = make_product(seller, stock=5)
    attempts = 12
    outcomes = []
    outcomes_lock = threading.Lock()
    start = threading.Barrier(attempts)

    def buy_one():
        with app.app_context():
            start.wait()
            try:
                place_order(
                    customer, shipping_address, "chapa", [{"productId": product_id, "quantity": 1}]
                )
                result = "placed"
            except OutOfStock:
                result = "out_of_stock"
            finally:
                db.session.remove()
        with outcomes_lock:
            outcomes.append(result)

    workers = [threading.Thread(target=buy_one) for _ in range(attempts)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert outcomes.count("placed") == 5
    assert outcomes.count("out_of_stock") == attempts - 5

    with app.app_context():
        assert db.session.get(Product, product_id).stock_quantity == 0
        sold = db.session.execute(
            select(func.sum(OrderItem.quantity)).where(OrderItem.product_id == product_id)
        ).scalar()
        assert sold == 5
        assert count_rows(Order) == 5


def test_order_totals_cannot_change_after_placement(app, customer, seller, make_product, shipping_address):
    product_id = make_product(seller, price="80.00")
    with app.app_context():
        order = place_order(
            customer, shipping_address, "chapa", [{"productId": product_id, "quantity": 1}]
        )
        order.total = Decimal("1.00")
        with pytest.raises(ImmutableFieldError):
            db.session.commit()
        db.session.rollback()

        order = db.session.get(Order, order.id)
        order.status = "confirmed"
        db.session.commit()
        assert db.session.get(Order, order.id).total == Decimal("130.00")


def test_customer_order_listing_and_detail(
    app, client, customer, make_user, seller, make_product, auth_headers, shipping_address
):
    product_id = make_product(seller, price="25.00")
    with app.app_context():
        order = place_order(
            customer, shipping_address, "cash", [{"productId": product_id, "quantity": 2}]
        )
        order_id = order.id

    listing = client.get("/api/orders", headers=auth_headers(customer)).get_json()
    assert [entry["id"] for entry in listing["orders"]] == [order_id]
    assert listing["orders"][0]["total"] == 100.0

    detail = client.get(f"/api/orders/{order_id}", headers=auth_headers(customer)).get_json()
    assert detail["order"]["items"][0]["quantity"] == 2
    assert detail["order"]["shipping_address"]["full_name"] == "Abebe Kebede"

    stranger = make_user("stranger@example.com")
    response = client.get(f"/api/orders/{order_id}", headers=auth_headers(stranger))
    assert response.status_code == 404


def test_seller_sees_their_order_lines(
    app, client, customer, seller, make_user, make_product, auth_headers, shipping_address
):
    other_seller = make_user("other-seller@example.com", role="seller")
    mine = make_product(seller, name="Mine")
    theirs = make_product(other_seller, name="Theirs")
    with app.app_context():
        place_order(
            customer,
            shipping_address,
            "chapa",
            [{"productId": mine, "quantity": 1}, {"productId": theirs, "quantity": 3}],
        )

    response = client.get("/api/orders/seller", headers=auth_headers(seller))
    lines = response.get_json()["orders"]
    assert [line["product_name"] for line in lines] == ["Mine"]
    assert lines[0]["customer_name"] == "Abebe Kebede"

    forbidden = client.get("/api/orders/seller", headers=auth_headers(customer))
    assert forbidden.status_code == 403


def test_admin_updates_order_status(
    app, client, admin, customer, seller, make_product, auth_headers, shipping_address
):
    product_id = make_product(seller)
    with app.app_context():
        order_id = place_order(
            customer, shipping_address, "chapa", [{"productId": product_id, "quantity": 1}]
        ).id

    bad = client.put(
        f"/api/admin/orders/{order_id}/status",
        json={"status": "teleported"},
        headers=auth_headers(admin),
    )
    assert bad.status_code == 400

    good = client.put(
        f"/api/admin/orders/{order_id}/status",
        json={"status": "shipped"},
        headers=auth_headers(admin),
    )
    assert good.status_code == 200

    missing = client.put(
        "/api/admin/orders/9999/status", json={"status": "shipped"}, headers=auth_headers(admin)
    )
    assert missing.status_code == 404

    listing = client.get("/api/admin/orders", headers=auth_headers(admin)).get_json()
    assert listing["orders"][0]["status"] == "shipped"
    assert listing["orders"][0]["customer_email"] == "customer@example.com"
