from decimal import Decimal

import bcrypt
import pytest
from flask_jwt_extended import create_access_token
from sqlalchemy import select

from app import create_app
from models import Category, Product, SellerDetails, User, db
from wallet import get_or_create_wallet

TEST_PASSWORD = "secret123"


@pytest.fixture
def app(tmp_path):
    database_path = tmp_path / "marketplace-test.db"
    application = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{database_path}",
            # File-backed SQLite so worker threads get their own connections.
            "SQLALCHEMY_ENGINE_OPTIONS": {
                "connect_args": {"timeout": 30, "check_same_thread": False}
            },
            "JWT_SECRET_KEY": "test-secret-key-that-is-long-enough-for-hs256",
            "SHIPPING_COST": "50",
            "RESEND_API_KEY": "",
            "CHAPA_SECRET_KEY": "CHASECK_TEST-abc123def456",
            "CHAPA_API_URL": "https://chapa.test/v1/transaction",
            "DEFAULT_ADMIN_EMAIL": "",
            "DEFAULT_ADMIN_PASSWORD": "",
        }
    )
    yield application
    with application.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make_user(email, role="customer", name="Test User", is_active=True, business_name=None):
        with app.app_context():
            user = User(
                email=email,
                password=bcrypt.hashpw(
                    TEST_PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=4)
                ).decode("utf-8"),
                role=role,
                name=name,
                is_active=is_active,
            )
            db.session.add(user)
            db.session.flush()
            if business_name:
                db.session.add(SellerDetails(user_id=user.id, business_name=business_name))
            if role == "seller":
                get_or_create_wallet(user.id)
            db.session.commit()
            return user.id

    return _make_user


@pytest.fixture
def make_product(app):
    def _make_product(
        seller_id,
        name="Test Product",
        price="100.00",
        stock=10,
        discount_price=None,
        is_active=True,
    ):
        with app.app_context():
            category_id = db.session.execute(
                select(Category.id).order_by(Category.id).limit(1)
            ).scalar()
            count = db.session.execute(select(Product.id)).all()
            suffix = len(count) + 1
            product = Product(
                seller_id=seller_id,
                category_id=category_id,
                name=name,
                slug=f"test-product-{suffix}",
                description=f"{name} description",
                sku=f"TST{suffix:05d}",
                price=Decimal(price),
                discount_price=Decimal(discount_price) if discount_price is not None else None,
                stock_quantity=stock,
                is_active=is_active,
                is_approved=True,
            )
            db.session.add(product)
            db.session.commit()
            return product.id

    return _make_product


@pytest.fixture
def auth_headers(app):
    def _auth_headers(user_id):
        with app.app_context():
            token = create_access_token(identity=str(user_id))
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
def customer(make_user):
    return make_user("customer@example.com", name="Abebe Kebede")


@pytest.fixture
def seller(make_user):
    return make_user("seller@example.com", role="seller", name="Selam Shop", business_name="Selam Shop")


@pytest.fixture
def admin(make_user):
    return make_user("admin@example.com", role="admin", name="Site Admin")


@pytest.fixture
def shipping_address():
    return {
        "fullName": "Abebe Kebede",
        "phone": "0911000000",
        "addressLine": "Bole Road 12",
        "city": "Addis Ababa",
    }
