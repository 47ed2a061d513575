import os
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import bcrypt
from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt_identity,
    jwt_required,
)
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from werkzeug.middleware.proxy_fix import ProxyFix

import catalog
import orders as order_service
import payments
import wallet as wallet_service
from helpers import (
    calculate_discount_percent,
    isoformat,
    is_valid_email,
    money_to_float,
    normalize_email,
    parse_int,
    parse_money,
    to_money,
)
from mailer import send_order_confirmation_email
from models import (
    Address,
    CartItem,
    Category,
    Order,
    OrderItem,
    Product,
    ProductAttribute,
    ProductImage,
    ProductVariant,
    Review,
    SellerDetails,
    User,
    WishlistItem,
    db,
)

load_dotenv()

DEFAULT_CATEGORIES = [
    ("Electronics", "electronics", "Electronic devices and accessories"),
    ("Fashion", "fashion", "Clothing and fashion items"),
    ("Home & Kitchen", "home-kitchen", "Home appliances and kitchen items"),
    ("Books", "books", "Books and educational materials"),
    ("Sports", "sports", "Sports equipment and accessories"),
    ("Beauty", "beauty", "Beauty and personal care products"),
]

DEFAULT_ADMIN_EMAIL = normalize_email(os.getenv("DEFAULT_ADMIN_EMAIL", ""))
DEFAULT_ADMIN_NAME = (os.getenv("DEFAULT_ADMIN_NAME", "System Admin") or "System Admin").strip()


def build_database_uri(raw_value: Optional[str], fallback: str) -> str:
    uri = (raw_value or "").strip()
    if not uri:
        return fallback
    if uri.startswith("mysql://"):
        return "mysql+pymysql://" + uri[len("mysql://"):]
    return uri


def create_app(test_config: Optional[Dict] = None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Honor proxy headers so generated callback links keep the public origin.
    trusted_proxy_hops_raw = os.getenv("TRUSTED_PROXY_HOPS", "1")
    try:
        trusted_proxy_hops = max(0, int(trusted_proxy_hops_raw))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Configuration ---
    app.config["JWT_SECRET_KEY"] = os.getenv(
        "JWT_SECRET_KEY", "change-me-in-production"
    )
    try:
        token_hours = max(1, int(os.getenv("JWT_ACCESS_TOKEN_HOURS", "1")))
    except (TypeError, ValueError):
        token_hours = 1
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(hours=token_hours)
    app.config["SQLALCHEMY_DATABASE_URI"] = build_database_uri(
        os.getenv("DATABASE_URL"),
        "sqlite:///" + os.path.join(app.root_path, "marketplace.db"),
    )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {"pool_pre_ping": True}
    app.config["SHIPPING_COST"] = os.getenv("SHIPPING_COST", "50")
    app.config["PAYMENT_CURRENCY"] = os.getenv("PAYMENT_CURRENCY", "ETB")
    app.config["PAYMENT_TIMEOUT_SECONDS"] = int(os.getenv("PAYMENT_TIMEOUT_SECONDS", "15"))
    app.config["CHAPA_SECRET_KEY"] = os.getenv("CHAPA_SECRET_KEY", "")
    app.config["CHAPA_API_URL"] = os.getenv("CHAPA_API_URL", payments.CHAPA_DEFAULT_API_URL)
    app.config["CHAPA_CALLBACK_URL"] = os.getenv("CHAPA_CALLBACK_URL", "")
    app.config["API_URL"] = os.getenv("API_URL", "http://localhost:5000/api")
    app.config["FRONTEND_URL"] = os.getenv("FRONTEND_URL", "http://localhost:5173")
    app.config["RESEND_API_KEY"] = (os.getenv("RESEND_API_KEY") or "").strip()
    app.config["ORDER_EMAIL_SENDER"] = os.getenv("ORDER_EMAIL_SENDER", "orders@marketplace.local")
    app.config["DEFAULT_ADMIN_EMAIL"] = DEFAULT_ADMIN_EMAIL
    app.config["DEFAULT_ADMIN_PASSWORD"] = os.getenv("DEFAULT_ADMIN_PASSWORD", "")
    app.config["DEFAULT_ADMIN_NAME"] = DEFAULT_ADMIN_NAME

    if test_config:
        app.config.update(test_config)

    # --- Initialize extensions ---
    allowed_origins = [
        "http://localhost:5173",
        "http://localhost:4173",
        "http://localhost:3000",
        str(app.config.get("FRONTEND_URL") or "").strip(),
    ]
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)
    allowed_origins = [origin for origin in allowed_origins if origin]

    CORS(app, supports_credentials=True, origins=allowed_origins or "*")

    JWTManager(app)
    db.init_app(app)

    # --- Helpers ---

    SELF_SERVICE_ROLES = {"customer", "seller"}
    MIN_PASSWORD_LENGTH = 6

    def hash_password(password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    def check_password(password: str, hashed: Optional[str]) -> bool:
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False

    def ensure_default_data():
        existing_category = db.session.execute(select(Category.id).limit(1)).first()
        if existing_category is None:
            for name, slug, description in DEFAULT_CATEGORIES:
                db.session.add(Category(name=name, slug=slug, description=description))
            app.logger.info("Default categories created")

        admin_email = normalize_email(app.config.get("DEFAULT_ADMIN_EMAIL"))
        admin_password = str(app.config.get("DEFAULT_ADMIN_PASSWORD") or "")
        if admin_email and admin_password:
            admin = db.session.execute(
                select(User).where(User.email == admin_email)
            ).scalar_one_or_none()
            if admin is None:
                db.session.add(
                    User(
                        email=admin_email,
                        password=hash_password(admin_password),
                        role="admin",
                        name=app.config.get("DEFAULT_ADMIN_NAME") or "System Admin",
                        is_verified=True,
                        is_active=True,
                    )
                )
                app.logger.info("Default admin %s created", admin_email)
        db.session.commit()

    def load_current_user() -> Optional[User]:
        user_id = parse_int(get_jwt_identity())
        if user_id is None:
            return None
        return db.session.get(User, user_id)

    def require_role(*roles: str):
        allowed = {str(role).strip().lower() for role in roles if role}

        current_user = load_current_user()
        if current_user is None:
            return None, (jsonify({"message": "User not found"}), 401)
        if not current_user.is_active:
            return None, (jsonify({"message": "Account is deactivated"}), 401)

        if current_user.role == "admin" or not allowed or current_user.role in allowed:
            return current_user, None

        return (
            None,
            (
                jsonify(
                    {
                        "message": f"User role {current_user.role} is not authorized to access this route"
                    }
                ),
                403,
            ),
        )

    def require_admin_user():
        return require_role("admin")

    def error_response(exc):
        return jsonify({"success": False, "message": exc.message}), exc.status_code

    def serialize_user_profile(user: Optional[User]) -> Dict[str, object]:
        if not user:
            return {}
        return {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "phone": user.phone or "",
            "role": user.role,
            "profileImage": user.profile_image,
            "is_verified": bool(user.is_verified),
            "created_at": isoformat(user.created_at),
        }

    def serialize_admin_user(user: User) -> Dict[str, object]:
        serialized = serialize_user_profile(user)
        serialized["is_active"] = bool(user.is_active)
        return serialized

    def serialize_category(category: Category, product_count: Optional[int] = None):
        serialized = {
            "id": category.id,
            "parent_id": category.parent_id,
            "name": category.name,
            "slug": category.slug,
            "description": category.description or "",
            "image_url": category.image_url,
            "display_order": category.display_order,
            "is_active": bool(category.is_active),
        }
        if product_count is not None:
            serialized["product_count"] = int(product_count or 0)
        return serialized

    def serialize_product(product: Product) -> Dict[str, object]:
        return {
            "id": product.id,
            "seller_id": product.seller_id,
            "category_id": product.category_id,
            "brand_id": product.brand_id,
            "name": product.name,
            "slug": product.slug,
            "description": product.description or "",
            "sku": product.sku,
            "price": money_to_float(product.price),
            "discount_price": money_to_float(product.discount_price),
            "discount_percent": calculate_discount_percent(
                product.price, product.discount_price
            ),
            "stock_quantity": product.stock_quantity,
            "weight": money_to_float(product.weight),
            "dimensions": product.dimensions,
            "is_featured": bool(product.is_featured),
            "is_active": bool(product.is_active),
            "is_approved": bool(product.is_approved),
            "views_count": product.views_count,
            "sales_count": product.sales_count,
            "created_at": isoformat(product.created_at),
        }

    def serialize_product_row(row) -> Dict[str, object]:
        serialized = serialize_product(row.Product)
        serialized.update(
            {
                "seller_name": row.seller_name,
                "category_name": row.category_name,
                "brand_name": row.brand_name,
                "primary_image": row.primary_image,
                "avg_rating": round(float(row.avg_rating), 2)
                if row.avg_rating is not None
                else None,
                "review_count": int(row.review_count or 0),
            }
        )
        return serialized

    def serialize_review(review: Review) -> Dict[str, object]:
        return {
            "id": review.id,
            "product_id": review.product_id,
            "user_id": review.user_id,
            "order_id": review.order_id,
            "rating": review.rating,
            "title": review.title or "",
            "comment": review.comment or "",
            "is_verified_purchase": bool(review.is_verified_purchase),
            "user_name": review.user.name if review.user else "",
            "profile_image": review.user.profile_image if review.user else None,
            "created_at": isoformat(review.created_at),
        }

    def serialize_product_detail(product: Product) -> Dict[str, object]:
        serialized = serialize_product(product)
        images = sorted(
            product.images, key=lambda image: (not image.is_primary, image.display_order, image.id)
        )
        stats = catalog.rating_summary(product.id)
        serialized.update(
            {
                "seller_name": product.seller.name if product.seller else "",
                "category_name": product.category.name if product.category else "",
                "brand_name": product.brand.name if product.brand else None,
                "avg_rating": stats["avg_rating"],
                "review_count": stats["total_reviews"],
                "images": [
                    {
                        "id": image.id,
                        "image_url": image.image_url,
                        "is_primary": bool(image.is_primary),
                        "display_order": image.display_order,
                    }
                    for image in images
                ],
                "variants": [
                    {
                        "id": variant.id,
                        "variant_name": variant.variant_name,
                        "variant_value": variant.variant_value,
                        "sku": variant.sku,
                        "price": money_to_float(variant.price),
                        "stock_quantity": variant.stock_quantity,
                    }
                    for variant in product.variants
                ],
                "attributes": [
                    {
                        "id": attribute.id,
                        "attribute_name": attribute.attribute_name,
                        "attribute_value": attribute.attribute_value,
                    }
                    for attribute in product.attributes
                ],
                "reviews": [
                    serialize_review(review)
                    for review in catalog.approved_reviews(product.id, limit=10)
                ],
            }
        )
        return serialized

    def serialize_address(address: Optional[Address]) -> Dict[str, object]:
        if not address:
            return {}
        return {
            "id": address.id,
            "full_name": address.full_name,
            "phone": address.phone,
            "address_line": address.address_line,
            "city": address.city,
            "state": address.state or "",
            "postal_code": address.postal_code or "",
            "country": address.country or "",
        }

    def serialize_order(order: Order) -> Dict[str, object]:
        return {
            "id": order.id,
            "order_number": order.order_number,
            "customer_id": order.customer_id,
            "subtotal": money_to_float(order.subtotal),
            "shipping_cost": money_to_float(order.shipping_cost),
            "tax": money_to_float(order.tax),
            "total": money_to_float(order.total),
            "status": order.status,
            "payment_method": order.payment_method,
            "payment_status": order.payment_status,
            "transaction_ref": order.transaction_ref,
            "tracking_number": order.tracking_number,
            "items_count": len(order.items),
            "shipping_address": serialize_address(order.shipping_address),
            "created_at": isoformat(order.created_at),
        }

    def serialize_order_item(item: OrderItem, images: Optional[Dict[int, str]] = None):
        return {
            "id": item.id,
            "product_id": item.product_id,
            "seller_id": item.seller_id,
            "product_name": item.product_name,
            "sku": item.sku,
            "quantity": item.quantity,
            "price": money_to_float(item.price),
            "discount_price": money_to_float(item.discount_price),
            "subtotal": money_to_float(item.subtotal),
            "slug": item.product.slug if item.product else None,
            "image": (images or {}).get(item.product_id),
        }

    def serialize_order_detail(order: Order) -> Dict[str, object]:
        serialized = serialize_order(order)
        images = order_service.primary_images_for(item.product_id for item in order.items)
        serialized["items"] = [serialize_order_item(item, images) for item in order.items]
        return serialized

    def serialize_cart_item(item: CartItem, images: Dict[int, str]) -> Dict[str, object]:
        product = item.product
        unit_price = to_money(product.effective_price)
        return {
            "id": item.id,
            "product_id": item.product_id,
            "quantity": item.quantity,
            "name": product.name,
            "slug": product.slug,
            "price": money_to_float(product.price),
            "discount_price": money_to_float(product.discount_price),
            "unit_price": float(unit_price),
            "line_total": float(unit_price * item.quantity),
            "stock_quantity": product.stock_quantity,
            "image": images.get(item.product_id),
        }

    def serialize_wallet_transaction(entry) -> Dict[str, object]:
        return {
            "id": entry.id,
            "order_id": entry.order_id,
            "type": entry.type,
            "amount": money_to_float(entry.amount),
            "balance_after": money_to_float(entry.balance_after),
            "description": entry.description or "",
            "created_at": isoformat(entry.created_at),
        }

    def serialize_withdrawal(withdrawal) -> Dict[str, object]:
        return {
            "id": withdrawal.id,
            "seller_id": withdrawal.seller_id,
            "seller_name": withdrawal.seller.name if withdrawal.seller else "",
            "amount": money_to_float(withdrawal.amount),
            "status": withdrawal.status,
            "bank_account": withdrawal.bank_account,
            "notes": withdrawal.notes or "",
            "processed_by": withdrawal.processed_by,
            "processed_at": isoformat(withdrawal.processed_at),
            "created_at": isoformat(withdrawal.created_at),
        }

    def fetch_product(product_id: int):
        product = db.session.get(Product, product_id)
        if product is None:
            return None, (jsonify({"success": False, "message": "Product not found"}), 404)
        return product, None

    def fetch_active_product(product_id):
        parsed_id = parse_int(product_id)
        if parsed_id is None:
            return None, (jsonify({"success": False, "message": "A valid productId is required."}), 400)
        product = db.session.get(Product, parsed_id)
        if product is None or not product.is_active:
            return None, (jsonify({"success": False, "message": "Product not found"}), 404)
        return product, None

    def can_manage_product(product: Product, user: User) -> bool:
        return user.role == "admin" or product.seller_id == user.id

    def parse_image_entries(raw_images) -> List[Dict[str, object]]:
        entries = []
        if not isinstance(raw_images, list):
            return entries
        for index, entry in enumerate(raw_images):
            if isinstance(entry, dict):
                url = str(entry.get("image_url") or entry.get("url") or "").strip()
                is_primary = bool(entry.get("is_primary") or entry.get("isPrimary"))
            else:
                url = str(entry or "").strip()
                is_primary = False
            if url:
                entries.append({"image_url": url, "is_primary": is_primary, "display_order": index})
        if entries and not any(entry["is_primary"] for entry in entries):
            entries[0]["is_primary"] = True
        return entries

    def parse_variant_entries(raw_variants, product_sku: str):
        variants = []
        if not isinstance(raw_variants, list):
            return variants, None
        for index, entry in enumerate(raw_variants, start=1):
            if not isinstance(entry, dict):
                return None, "Each variant must be an object with a name and value."
            name = str(entry.get("name") or entry.get("variant_name") or "").strip()
            value = str(entry.get("value") or entry.get("variant_value") or "").strip()
            if not name or not value:
                return None, "Each variant needs a name and value."
            raw_price = entry.get("price")
            price = parse_money(raw_price)
            if raw_price not in (None, "") and (price is None or price <= 0):
                return None, "Variant price must be a positive number."
            stock = parse_int(entry.get("stockQuantity", entry.get("stock_quantity", 0)))
            if stock is None or stock < 0:
                return None, "Variant stock must be a whole number of zero or more."
            variants.append(
                {
                    "variant_name": name,
                    "variant_value": value,
                    "sku": str(entry.get("sku") or f"{product_sku}-{index}").strip(),
                    "price": price,
                    "stock_quantity": stock,
                }
            )
        return variants, None

    def parse_attribute_entries(raw_attributes) -> List[Dict[str, str]]:
        if isinstance(raw_attributes, dict):
            raw_attributes = [
                {"name": key, "value": value} for key, value in raw_attributes.items()
            ]
        attributes = []
        if not isinstance(raw_attributes, list):
            return attributes
        for entry in raw_attributes:
            if not isinstance(entry, dict):
                continue
            name = str(entry.get("name") or entry.get("attribute_name") or "").strip()
            value = str(entry.get("value") or entry.get("attribute_value") or "").strip()
            if name and value:
                attributes.append({"attribute_name": name, "attribute_value": value})
        return attributes

    def validate_pricing(price, discount_price):
        if price is None:
            return "Price must be a valid number."
        if price <= 0:
            return "Price must be greater than zero."
        if discount_price is not None:
            if discount_price <= 0:
                return "Discount price must be greater than zero."
            if discount_price >= price:
                return "Discount price must be lower than the standard price."
        return None

    with app.app_context():
        db.create_all()
        ensure_default_data()

    # --- ROUTES ---

    @app.route("/")
    def index():
        return jsonify(
            {
                "message": "E-Commerce API is running",
                "status": "OK",
                "endpoints": {
                    "auth": "/api/auth",
                    "products": "/api/products",
                    "orders": "/api/orders",
                    "categories": "/api/categories",
                    "admin": "/api/admin",
                },
            }
        )

    # --- Accounts ---

    @app.route("/api/auth/register", methods=["POST"])
    def register():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        name = str(payload.get("name", "")).strip()
        password = str(payload.get("password", ""))
        phone = str(payload.get("phone", "")).strip()
        requested_role = str(payload.get("role") or "customer").strip().lower()
        role = requested_role if requested_role in SELF_SERVICE_ROLES else "customer"

        if not email or not name or not password:
            return (
                jsonify(
                    {
                        "success": False,
                        "message": "Email, name, and password are required to create an account.",
                    }
                ),
                400,
            )
        if not is_valid_email(email):
            return jsonify({"success": False, "message": "Please provide a valid email address."}), 400
        if len(password) < MIN_PASSWORD_LENGTH:
            return (
                jsonify(
                    {
                        "success": False,
                        "message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.",
                    }
                ),
                400,
            )

        if db.session.execute(select(User.id).where(User.email == email)).first():
            return jsonify({"success": False, "message": "Email already registered"}), 400

        user = User(
            email=email,
            password=hash_password(password),
            name=name,
            phone=phone or None,
            role=role,
        )
        db.session.add(user)
        try:
            db.session.flush()
            business_name = str(payload.get("businessName") or "").strip()
            if role == "seller" and business_name:
                db.session.add(
                    SellerDetails(
                        user_id=user.id,
                        business_name=business_name,
                        business_email=email,
                        business_phone=phone or None,
                    )
                )
                wallet_service.get_or_create_wallet(user.id)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return jsonify({"success": False, "message": "Email already registered"}), 400

        app.logger.info("Registered %s account %s", role, email)
        token = create_access_token(identity=str(user.id), additional_claims={"role": user.role})
        return (
            jsonify(
                {
                    "success": True,
                    "message": "Registration successful",
                    "token": token,
                    "user": serialize_user_profile(user),
                }
            ),
            201,
        )

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password", ""))

        if not email or not password:
            return jsonify({"success": False, "message": "Email and password are required."}), 400

        user = db.session.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if not user or not check_password(password, user.password):
            return jsonify({"success": False, "message": "Invalid credentials"}), 401

        if not user.is_active:
            return jsonify({"success": False, "message": "Account is deactivated"}), 401

        token = create_access_token(identity=str(user.id), additional_claims={"role": user.role})
        return jsonify({"success": True, "token": token, "user": serialize_user_profile(user)})

    @app.route("/api/auth/profile", methods=["GET", "PUT"])
    @jwt_required()
    def manage_profile():
        current_user, auth_error = require_role()
        if auth_error:
            return auth_error

        if request.method == "GET":
            return jsonify({"success": True, "user": serialize_user_profile(current_user)})

        payload = request.get_json(silent=True) or {}
        if "name" in payload:
            name = str(payload.get("name") or "").strip()
            if not name:
                return jsonify({"success": False, "message": "Name cannot be empty."}), 400
            current_user.name = name
        if "phone" in payload:
            current_user.phone = str(payload.get("phone") or "").strip() or None
        db.session.commit()

        return jsonify(
            {
                "success": True,
                "message": "Profile updated successfully",
                "user": serialize_user_profile(current_user),
            }
        )

    # --- Catalog ---

    @app.route("/api/products", methods=["GET"])
    def list_products():
        rows, pagination = catalog.search_products(request.args)
        return jsonify(
            {
                "success": True,
                "products": [serialize_product_row(row) for row in rows],
                "pagination": pagination,
            }
        )

    @app.route("/api/products/<slug>", methods=["GET"])
    def get_product(slug: str):
        product = catalog.get_product_by_slug(slug)
        if product is None:
            return jsonify({"success": False, "message": "Product not found"}), 404

        serialized = serialize_product_detail(product)
        product.views_count = (product.views_count or 0) + 1
        db.session.commit()
        return jsonify({"success": True, "product": serialized})

    @app.route("/api/products", methods=["POST"])
    @jwt_required()
    def create_product():
        current_user, permission_error = require_role("seller", "admin")
        if permission_error:
            return permission_error

        payload = request.get_json(silent=True) or {}
        name = str(payload.get("name") or "").strip()
        description = str(payload.get("description") or "").strip()
        category_id = parse_int(payload.get("categoryId"))
        raw_price = payload.get("price")

        if not name or not description or category_id is None or raw_price in (None, ""):
            return (
                jsonify(
                    {
                        "success": False,
                        "message": "Missing required fields: name, description, categoryId, price",
                    }
                ),
                400,
            )

        price = parse_money(raw_price)
        discount_price = parse_money(payload.get("discountPrice"))
        pricing_error = validate_pricing(price, discount_price)
        if pricing_error:
            return jsonify({"success": False, "message": pricing_error}), 400

        stock_quantity = parse_int(payload.get("stockQuantity", 0) or 0)
        if stock_quantity is None or stock_quantity < 0:
            return (
                jsonify({"success": False, "message": "Stock quantity must be zero or more."}),
                400,
            )

        if db.session.get(Category, category_id) is None:
            return jsonify({"success": False, "message": "Category not found"}), 400

        try:
            brand_id = catalog.resolve_brand_id(payload.get("brandId", payload.get("brand")))
            sku = catalog.unique_product_sku(name)
            variants, variants_error = parse_variant_entries(payload.get("variants"), sku)
            if variants_error:
                db.session.rollback()
                return jsonify({"success": False, "message": variants_error}), 400

            product = Product(
                seller_id=current_user.id,
                category_id=category_id,
                brand_id=brand_id,
                name=name,
                slug=catalog.unique_product_slug(name),
                description=description,
                sku=sku,
                price=price,
                discount_price=discount_price,
                stock_quantity=stock_quantity,
                weight=parse_money(payload.get("weight")),
                dimensions=str(payload.get("dimensions") or "").strip() or None,
                is_approved=True,
            )
            product.images = [
                ProductImage(**entry) for entry in parse_image_entries(payload.get("images"))
            ]
            product.variants = [ProductVariant(**entry) for entry in variants]
            product.attributes = [
                ProductAttribute(**entry)
                for entry in parse_attribute_entries(payload.get("attributes"))
            ]
            db.session.add(product)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return (
                jsonify(
                    {
                        "success": False,
                        "message": "A product with the same SKU or slug already exists. Try a different name.",
                    }
                ),
                400,
            )

        app.logger.info("Seller %s created product %s", current_user.id, product.id)
        return (
            jsonify(
                {
                    "success": True,
                    "message": "Product created successfully",
                    "productId": product.id,
                    "product": serialize_product(product),
                }
            ),
            201,
        )

    @app.route("/api/products/<int:product_id>", methods=["PUT"])
    @jwt_required()
    def update_product(product_id: int):
        current_user, permission_error = require_role("seller", "admin")
        if permission_error:
            return permission_error

        product, load_error = fetch_product(product_id)
        if load_error:
            return load_error
        if not can_manage_product(product, current_user):
            return jsonify({"success": False, "message": "Not authorized"}), 403

        payload = request.get_json(silent=True) or {}

        if "name" in payload:
            name = str(payload.get("name") or "").strip()
            if not name:
                return jsonify({"success": False, "message": "A product name is required."}), 400
            if name != product.name:
                product.slug = catalog.unique_product_slug(name, exclude_id=product.id)
            product.name = name
        if "description" in payload:
            product.description = str(payload.get("description") or "").strip()
        if "categoryId" in payload:
            category_id = parse_int(payload.get("categoryId"))
            if category_id is None or db.session.get(Category, category_id) is None:
                return jsonify({"success": False, "message": "Category not found"}), 400
            product.category_id = category_id
        if "brandId" in payload or "brand" in payload:
            product.brand_id = catalog.resolve_brand_id(
                payload.get("brandId", payload.get("brand"))
            )

        price = parse_money(payload["price"]) if "price" in payload else to_money(product.price)
        if "discountPrice" in payload:
            discount_price = parse_money(payload.get("discountPrice"))
        else:
            discount_price = product.discount_price
        pricing_error = validate_pricing(price, discount_price)
        if pricing_error:
            db.session.rollback()
            return jsonify({"success": False, "message": pricing_error}), 400
        product.price = price
        product.discount_price = discount_price

        if "stockQuantity" in payload:
            stock_quantity = parse_int(payload.get("stockQuantity"))
            if stock_quantity is None or stock_quantity < 0:
                db.session.rollback()
                return (
                    jsonify({"success": False, "message": "Stock quantity must be zero or more."}),
                    400,
                )
            product.stock_quantity = stock_quantity
        if "weight" in payload:
            product.weight = parse_money(payload.get("weight"))
        if "dimensions" in payload:
            product.dimensions = str(payload.get("dimensions") or "").strip() or None
        if "images" in payload:
            product.images = [
                ProductImage(**entry) for entry in parse_image_entries(payload.get("images"))
            ]
        if "attributes" in payload:
            product.attributes = [
                ProductAttribute(**entry)
                for entry in parse_attribute_entries(payload.get("attributes"))
            ]

        db.session.commit()
        return jsonify(
            {
                "success": True,
                "message": "Product updated successfully",
                "product": serialize_product(product),
            }
        )

    @app.route("/api/products/<int:product_id>", methods=["DELETE"])
    @jwt_required()
    def delete_product(product_id: int):
        current_user, permission_error = require_role("seller", "admin")
        if permission_error:
            return permission_error

        product, load_error = fetch_product(product_id)
        if load_error:
            return load_error
        if not can_manage_product(product, current_user):
            return jsonify({"success": False, "message": "Not authorized"}), 403

        has_orders = db.session.execute(
            select(OrderItem.id).where(OrderItem.product_id == product.id).limit(1)
        ).first()
        if has_orders:
            product.is_active = False
            db.session.commit()
            return jsonify(
                {
                    "success": True,
                    "message": "Product has existing orders, so it was deactivated instead.",
                }
            )

        db.session.delete(product)
        db.session.commit()
        return jsonify({"success": True, "message": "Product deleted successfully"})

    def approve_product_by_id(product_id: int):
        product, load_error = fetch_product(product_id)
        if load_error:
            return load_error
        if product.is_approved:
            return jsonify({"success": True, "message": "Product already approved"})
        product.is_approved = True
        db.session.commit()
        return jsonify({"success": True, "message": "Product approved successfully"})

    @app.route("/api/products/<int:product_id>/approve", methods=["POST"])
    @jwt_required()
    def approve_product(product_id: int):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error
        return approve_product_by_id(product_id)

    @app.route("/api/categories", methods=["GET"])
    def list_categories():
        rows = catalog.list_active_categories()
        return jsonify(
            {
                "success": True,
                "categories": [
                    serialize_category(row.Category, row.product_count) for row in rows
                ],
            }
        )

    @app.route("/api/categories", methods=["POST"])
    @jwt_required()
    def create_category():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True) or {}
        name = " ".join(str(payload.get("name") or "").split())
        if len(name) < 2:
            return (
                jsonify(
                    {
                        "success": False,
                        "message": "Please provide a category name with at least two characters.",
                    }
                ),
                400,
            )

        parent_id = parse_int(payload.get("parentId"))
        if parent_id is not None and db.session.get(Category, parent_id) is None:
            return jsonify({"success": False, "message": "Parent category not found"}), 400

        category = Category(
            name=name,
            slug=catalog.unique_category_slug(name),
            description=str(payload.get("description") or "").strip() or None,
            parent_id=parent_id,
            image_url=str(payload.get("image_url") or "").strip() or None,
        )
        db.session.add(category)
        db.session.commit()
        return (
            jsonify(
                {
                    "success": True,
                    "message": "Category created successfully",
                    "categoryId": category.id,
                    "category": serialize_category(category),
                }
            ),
            201,
        )

    @app.route("/api/categories/<int:category_id>", methods=["PUT"])
    @jwt_required()
    def update_category(category_id: int):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        category = db.session.get(Category, category_id)
        if category is None:
            return jsonify({"success": False, "message": "Category not found"}), 404

        payload = request.get_json(silent=True) or {}
        if "name" in payload:
            name = " ".join(str(payload.get("name") or "").split())
            if len(name) < 2:
                return (
                    jsonify(
                        {
                            "success": False,
                            "message": "Please provide a category name with at least two characters.",
                        }
                    ),
                    400,
                )
            if name != category.name:
                category.slug = catalog.unique_category_slug(name, exclude_id=category.id)
            category.name = name
        if "description" in payload:
            category.description = str(payload.get("description") or "").strip() or None
        if "image_url" in payload:
            category.image_url = str(payload.get("image_url") or "").strip() or None
        db.session.commit()

        return jsonify(
            {
                "success": True,
                "message": "Category updated successfully",
                "category": serialize_category(category),
            }
        )

    @app.route("/api/categories/<int:category_id>", methods=["DELETE"])
    @jwt_required()
    def delete_category(category_id: int):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        category = db.session.get(Category, category_id)
        if category is None:
            return jsonify({"success": False, "message": "Category not found"}), 404

        in_use = db.session.execute(
            select(Product.id).where(Product.category_id == category.id).limit(1)
        ).first()
        if in_use:
            return (
                jsonify(
                    {
                        "success": False,
                        "message": "Move or delete the products in this category first.",
                    }
                ),
                409,
            )

        db.session.delete(category)
        db.session.commit()
        return jsonify({"success": True, "message": "Category deleted successfully"})

    # --- Cart & wishlist ---

    def find_cart_item(user_id: int, product_id: int) -> Optional[CartItem]:
        return db.session.execute(
            select(CartItem).where(
                CartItem.user_id == user_id,
                CartItem.product_id == product_id,
                CartItem.variant_id.is_(None),
            )
        ).scalar_one_or_none()

    def cart_response(user_id: int):
        items = list(
            db.session.execute(
                select(CartItem)
                .where(CartItem.user_id == user_id)
                .order_by(CartItem.created_at, CartItem.id)
            ).scalars()
        )
        images = order_service.primary_images_for(item.product_id for item in items)
        serialized = [serialize_cart_item(item, images) for item in items]
        subtotal = sum(to_money(item["line_total"]) for item in serialized)
        return jsonify(
            {
                "success": True,
                "cart": serialized,
                "subtotal": float(to_money(subtotal)),
            }
        )

    @app.route("/api/cart", methods=["GET"])
    @jwt_required()
    def get_cart():
        current_user, auth_error = require_role()
        if auth_error:
            return auth_error
        return cart_response(current_user.id)

    @app.route("/api/cart", methods=["POST"])
    @jwt_required()
    def add_to_cart():
        current_user, auth_error = require_role()
        if auth_error:
            return auth_error

        payload = request.get_json(silent=True) or {}
        product, load_error = fetch_active_product(payload.get("productId"))
        if load_error:
            return load_error

        quantity = parse_int(payload.get("quantity", 1))
        if quantity is None or quantity <= 0:
            return jsonify({"success": False, "message": "Quantity must be a positive whole number."}), 400

        cart_item = find_cart_item(current_user.id, product.id)
        new_quantity = quantity + (cart_item.quantity if cart_item else 0)
        if new_quantity > product.stock_quantity:
            return (
                jsonify(
                    {
                        "success": False,
                        "message": f"Only {product.stock_quantity} left in stock for {product.name}.",
                    }
                ),
                409,
            )

        if cart_item:
            cart_item.quantity = new_quantity
        else:
            db.session.add(
                CartItem(user_id=current_user.id, product_id=product.id, quantity=new_quantity)
            )
        db.session.commit()
        return cart_response(current_user.id)

    @app.route("/api/cart/<int:product_id>", methods=["PUT"])
    @jwt_required()
    def update_cart_item(product_id: int):
        current_user, auth_error = require_role()
        if auth_error:
            return auth_error

        cart_item = find_cart_item(current_user.id, product_id)
        if cart_item is None:
            return jsonify({"success": False, "message": "Item is not in your cart."}), 404

        payload = request.get_json(silent=True) or {}
        quantity = parse_int(payload.get("quantity"))
        if quantity is None:
            return jsonify({"success": False, "message": "Quantity must be a whole number."}), 400

        if quantity <= 0:
            db.session.delete(cart_item)
        else:
            if quantity > cart_item.product.stock_quantity:
                return (
                    jsonify(
                        {
                            "success": False,
                            "message": f"Only {cart_item.product.stock_quantity} left in stock for {cart_item.product.name}.",
                        }
                    ),
                    409,
                )
            cart_item.quantity = quantity
        db.session.commit()
        return cart_response(current_user.id)

    @app.route("/api/cart/<int:product_id>", methods=["DELETE"])
    @jwt_required()
    def remove_from_cart(product_id: int):
        current_user, auth_error = require_role()
        if auth_error:
            return auth_error

        db.session.execute(
            delete(CartItem).where(
                CartItem.user_id == current_user.id, CartItem.product_id == product_id
            )
        )
        db.session.commit()
        return cart_response(current_user.id)

    @app.route("/api/wishlist", methods=["GET"])
    @jwt_required()
    def get_wishlist():
        current_user, auth_error = require_role()
        if auth_error:
            return auth_error

        items = list(
            db.session.execute(
                select(WishlistItem)
                .where(WishlistItem.user_id == current_user.id)
                .order_by(WishlistItem.created_at.desc(), WishlistItem.id.desc())
            ).scalars()
        )
        images = order_service.primary_images_for(item.product_id for item in items)
        return jsonify(
            {
                "success": True,
                "wishlist": [
                    {
                        "id": item.id,
                        "product_id": item.product_id,
                        "name": item.product.name,
                        "slug": item.product.slug,
                        "price": money_to_float(item.product.price),
                        "discount_price": money_to_float(item.product.discount_price),
                        "image": images.get(item.product_id),
                        "created_at": isoformat(item.created_at),
                    }
                    for item in items
                ],
            }
        )

    @app.route("/api/wishlist", methods=["POST"])
    @jwt_required()
    def add_to_wishlist():
        current_user, auth_error = require_role()
        if auth_error:
            return auth_error

        payload = request.get_json(silent=True) or {}
        product, load_error = fetch_active_product(payload.get("productId"))
        if load_error:
            return load_error

        existing = db.session.execute(
            select(WishlistItem.id).where(
                WishlistItem.user_id == current_user.id,
                WishlistItem.product_id == product.id,
            )
        ).first()
        if not existing:
            db.session.add(WishlistItem(user_id=current_user.id, product_id=product.id))
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
        return jsonify({"success": True, "message": "Added to wishlist"})

    @app.route("/api/wishlist/<int:product_id>", methods=["DELETE"])
    @jwt_required()
    def remove_from_wishlist(product_id: int):
        current_user, auth_error = require_role()
        if auth_error:
            return auth_error

        db.session.execute(
            delete(WishlistItem).where(
                WishlistItem.user_id == current_user.id,
                WishlistItem.product_id == product_id,
            )
        )
        db.session.commit()
        return jsonify({"success": True, "message": "Removed from wishlist"})

    # --- Orders ---

    @app.route("/api/orders", methods=["POST"])
    @jwt_required()
    def create_order():
        current_user, auth_error = require_role()
        if auth_error:
            return auth_error

        payload = request.get_json(silent=True) or {}
        try:
            order = order_service.place_order(
                current_user.id,
                payload.get("shippingAddress"),
                payload.get("paymentMethod"),
                payload.get("items"),
            )
        except order_service.OrderError as exc:
            app.logger.warning("Order rejected for customer %s: %s", current_user.id, exc.message)
            return error_response(exc)

        email_sent, _ = send_order_confirmation_email(order, current_user.email)

        return (
            jsonify(
                {
                    "success": True,
                    "message": "Order placed successfully",
                    "orderId": order.id,
                    "orderNumber": order.order_number,
                    "order": serialize_order_detail(order),
                    "email_sent": email_sent,
                }
            ),
            201,
        )

    @app.route("/api/orders", methods=["GET"])
    @jwt_required()
    def list_orders():
        current_user, auth_error = require_role()
        if auth_error:
            return auth_error

        customer_orders = order_service.list_customer_orders(current_user.id)
        return jsonify(
            {"success": True, "orders": [serialize_order(order) for order in customer_orders]}
        )

    @app.route("/api/orders/seller", methods=["GET"])
    @jwt_required()
    def list_seller_orders():
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error

        rows = order_service.list_seller_order_lines(current_user.id)
        return jsonify(
            {
                "success": True,
                "orders": [
                    {
                        "id": order.id,
                        "order_number": order.order_number,
                        "created_at": isoformat(order.created_at),
                        "status": order.status,
                        "payment_status": order.payment_status,
                        "product_name": item.product_name,
                        "quantity": item.quantity,
                        "price": money_to_float(item.price),
                        "subtotal": money_to_float(item.subtotal),
                        "customer_name": customer_name,
                    }
                    for item, order, customer_name in rows
                ],
            }
        )

    @app.route("/api/orders/<int:order_id>", methods=["GET"])
    @jwt_required()
    def get_order_detail(order_id: int):
        current_user, auth_error = require_role()
        if auth_error:
            return auth_error

        order = order_service.get_customer_order(current_user.id, order_id)
        if order is None:
            return jsonify({"success": False, "message": "Order not found"}), 404
        return jsonify({"success": True, "order": serialize_order_detail(order)})

    # --- Reviews ---

    def parse_rating(value):
        rating = parse_int(value)
        if rating is None or rating < 1 or rating > 5:
            return None
        return rating

    @app.route("/api/reviews/product/<int:product_id>", methods=["GET"])
    def list_product_reviews(product_id: int):
        reviews = catalog.approved_reviews(product_id)
        return jsonify(
            {
                "success": True,
                "reviews": [serialize_review(review) for review in reviews],
                "stats": catalog.rating_summary(product_id),
            }
        )

    @app.route("/api/reviews", methods=["POST"])
    @jwt_required()
    def create_review():
        current_user, auth_error = require_role()
        if auth_error:
            return auth_error

        payload = request.get_json(silent=True) or {}
        product_id = parse_int(payload.get("productId"))
        order_id = parse_int(payload.get("orderId"))
        rating = parse_rating(payload.get("rating"))
        if product_id is None:
            return jsonify({"success": False, "message": "A valid productId is required."}), 400
        if rating is None:
            return jsonify({"success": False, "message": "Rating must be between 1 and 5."}), 400

        if not catalog.has_delivered_purchase(current_user.id, product_id, order_id):
            return (
                jsonify({"success": False, "message": "You can only review purchased products"}),
                400,
            )

        if order_id is None:
            order_id = db.session.execute(
                select(Order.id)
                .join(OrderItem, OrderItem.order_id == Order.id)
                .where(
                    Order.customer_id == current_user.id,
                    OrderItem.product_id == product_id,
                    Order.status == "delivered",
                )
                .order_by(Order.created_at.desc(), Order.id.desc())
                .limit(1)
            ).scalar()

        duplicate = db.session.execute(
            select(Review.id).where(
                Review.product_id == product_id,
                Review.user_id == current_user.id,
                Review.order_id == order_id,
            )
        ).first()
        if duplicate:
            return (
                jsonify({"success": False, "message": "You have already reviewed this product"}),
                400,
            )

        review = Review(
            product_id=product_id,
            user_id=current_user.id,
            order_id=order_id,
            rating=rating,
            title=str(payload.get("title") or "").strip() or None,
            comment=str(payload.get("comment") or "").strip() or None,
        )
        db.session.add(review)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return (
                jsonify({"success": False, "message": "You have already reviewed this product"}),
                400,
            )

        return (
            jsonify(
                {
                    "success": True,
                    "message": "Review submitted successfully",
                    "review": serialize_review(review),
                }
            ),
            201,
        )

    @app.route("/api/reviews/<int:review_id>", methods=["PUT"])
    @jwt_required()
    def update_review(review_id: int):
        current_user, auth_error = require_role()
        if auth_error:
            return auth_error

        review = db.session.get(Review, review_id)
        if review is None or review.user_id != current_user.id:
            return jsonify({"success": False, "message": "Not authorized"}), 403

        payload = request.get_json(silent=True) or {}
        if "rating" in payload:
            rating = parse_rating(payload.get("rating"))
            if rating is None:
                return jsonify({"success": False, "message": "Rating must be between 1 and 5."}), 400
            review.rating = rating
        if "title" in payload:
            review.title = str(payload.get("title") or "").strip() or None
        if "comment" in payload:
            review.comment = str(payload.get("comment") or "").strip() or None
        db.session.commit()

        return jsonify(
            {
                "success": True,
                "message": "Review updated successfully",
                "review": serialize_review(review),
            }
        )

    @app.route("/api/reviews/<int:review_id>", methods=["DELETE"])
    @jwt_required()
    def delete_review(review_id: int):
        current_user, auth_error = require_role()
        if auth_error:
            return auth_error

        review = db.session.get(Review, review_id)
        if review is None or review.user_id != current_user.id:
            return jsonify({"success": False, "message": "Not authorized"}), 403

        db.session.delete(review)
        db.session.commit()
        return jsonify({"success": True, "message": "Review deleted successfully"})

    # ---- Chapa Payment Integration ----

    @app.route("/api/payment/initialize", methods=["POST"])
    @jwt_required()
    def initialize_payment():
        current_user, auth_error = require_role()
        if auth_error:
            return auth_error

        payload = request.get_json(silent=True) or {}
        order_id = parse_int(payload.get("orderId"))
        order = (
            order_service.get_customer_order(current_user.id, order_id)
            if order_id is not None
            else None
        )
        if order is None:
            return jsonify({"success": False, "message": "Order not found"}), 404

        try:
            checkout = payments.initialize_payment(order, current_user)
        except payments.PaymentError as exc:
            app.logger.error("Chapa init error for order %s: %s", order.order_number, exc.message)
            return error_response(exc)

        return jsonify(
            {
                "success": True,
                "checkout_url": checkout["checkout_url"],
                "tx_ref": checkout["tx_ref"],
            }
        )

    @app.route("/api/payment/verify/<tx_ref>", methods=["GET"])
    def verify_payment(tx_ref: str):
        try:
            order, changed = payments.confirm_payment(tx_ref)
        except (payments.PaymentError, order_service.OrderError) as exc:
            app.logger.warning("Chapa verify failed for %s: %s", tx_ref, exc.message)
            return error_response(exc)

        return jsonify(
            {
                "success": True,
                "message": "Payment verified successfully"
                if changed
                else "Payment was already verified",
                "data": {
                    "orderId": order.id,
                    "orderNumber": order.order_number,
                    "status": order.status,
                    "payment_status": order.payment_status,
                    "total": money_to_float(order.total),
                },
            }
        )

    @app.route("/api/payment/callback", methods=["POST"])
    def payment_webhook():
        event = request.get_json(silent=True) or {}
        try:
            outcome = payments.handle_webhook_event(event)
        except (payments.PaymentError, order_service.OrderError) as exc:
            app.logger.error("Chapa webhook error: %s", exc.message)
            return jsonify({"status": "error", "message": exc.message}), exc.status_code

        return jsonify({"status": outcome}), 200

    # --- Seller wallet ---

    @app.route("/api/wallet", methods=["GET"])
    @jwt_required()
    def get_wallet():
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error

        summary = wallet_service.wallet_summary(current_user.id)
        seller_wallet = summary["wallet"]
        return jsonify(
            {
                "success": True,
                "balance": money_to_float(seller_wallet.balance),
                "pending_balance": money_to_float(seller_wallet.pending_balance),
                "total_earned": money_to_float(seller_wallet.total_earned),
                "total_withdrawn": money_to_float(seller_wallet.total_withdrawn),
                "transactions": [
                    serialize_wallet_transaction(entry) for entry in summary["transactions"]
                ],
            }
        )

    @app.route("/api/wallet/withdraw", methods=["POST"])
    @jwt_required()
    def request_withdrawal():
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error

        payload = request.get_json(silent=True) or {}
        try:
            withdrawal = wallet_service.request_withdrawal(
                current_user.id,
                payload.get("amount"),
                payload.get("bankName"),
                payload.get("accountNumber"),
            )
        except wallet_service.WalletError as exc:
            return error_response(exc)

        return jsonify(
            {
                "success": True,
                "message": "Withdrawal request submitted",
                "withdrawal": serialize_withdrawal(withdrawal),
            }
        )

    # --- Admin Routes ---

    @app.route("/api/admin/users", methods=["GET"])
    @jwt_required()
    def admin_list_users():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        users = db.session.execute(
            select(User).order_by(User.created_at.desc(), User.id.desc())
        ).scalars()
        return jsonify({"success": True, "users": [serialize_admin_user(user) for user in users]})

    @app.route("/api/admin/users/<int:user_id>/status", methods=["PUT"])
    @jwt_required()
    def admin_toggle_user_status(user_id: int):
        admin_user, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        user = db.session.get(User, user_id)
        if user is None:
            return jsonify({"success": False, "message": "User not found"}), 404
        if user.id == admin_user.id:
            return (
                jsonify({"success": False, "message": "You cannot deactivate your own account."}),
                400,
            )

        user.is_active = not user.is_active
        db.session.commit()
        app.logger.info(
            "Admin %s set user %s active=%s", admin_user.id, user.id, user.is_active
        )
        return jsonify(
            {"success": True, "message": "User status updated", "is_active": user.is_active}
        )

    @app.route("/api/admin/sellers/pending", methods=["GET"])
    @jwt_required()
    def admin_pending_sellers():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        rows = db.session.execute(
            select(User, SellerDetails)
            .join(SellerDetails, SellerDetails.user_id == User.id)
            .where(SellerDetails.is_approved.is_(False))
            .order_by(SellerDetails.created_at.desc())
        )
        return jsonify(
            {
                "success": True,
                "sellers": [
                    {
                        "id": user.id,
                        "email": user.email,
                        "name": user.name,
                        "business_name": details.business_name,
                        "business_email": details.business_email,
                        "created_at": isoformat(details.created_at),
                    }
                    for user, details in rows
                ],
            }
        )

    @app.route("/api/admin/sellers/<int:user_id>/approve", methods=["PUT"])
    @jwt_required()
    def admin_approve_seller(user_id: int):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        details = db.session.execute(
            select(SellerDetails).where(SellerDetails.user_id == user_id)
        ).scalar_one_or_none()
        if details is None:
            return jsonify({"success": False, "message": "Seller application not found"}), 404

        details.is_approved = True
        details.approval_date = datetime.utcnow()
        wallet_service.get_or_create_wallet(user_id)
        db.session.commit()
        return jsonify({"success": True, "message": "Seller approved successfully"})

    @app.route("/api/admin/sellers/<int:user_id>/reject", methods=["PUT"])
    @jwt_required()
    def admin_reject_seller(user_id: int):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        user = db.session.get(User, user_id)
        if user is None:
            return jsonify({"success": False, "message": "User not found"}), 404

        db.session.execute(delete(SellerDetails).where(SellerDetails.user_id == user_id))
        if user.role == "seller":
            user.role = "customer"
        db.session.commit()
        return jsonify({"success": True, "message": "Seller rejected"})

    @app.route("/api/admin/products/<int:product_id>/approve", methods=["PUT"])
    @jwt_required()
    def admin_approve_product(product_id: int):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error
        return approve_product_by_id(product_id)

    @app.route("/api/admin/products/<int:product_id>/feature", methods=["PUT"])
    @jwt_required()
    def admin_toggle_featured(product_id: int):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        product, load_error = fetch_product(product_id)
        if load_error:
            return load_error

        product.is_featured = not product.is_featured
        db.session.commit()
        return jsonify(
            {
                "success": True,
                "message": "Product added to featured"
                if product.is_featured
                else "Product removed from featured",
                "isFeatured": product.is_featured,
            }
        )

    @app.route("/api/admin/orders", methods=["GET"])
    @jwt_required()
    def admin_list_orders():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        recent_orders = order_service.list_recent_orders()
        serialized_orders = []
        for order in recent_orders:
            serialized = serialize_order(order)
            serialized["customer_name"] = order.customer.name if order.customer else ""
            serialized["customer_email"] = order.customer.email if order.customer else ""
            serialized_orders.append(serialized)
        return jsonify({"success": True, "orders": serialized_orders})

    @app.route("/api/admin/orders/<int:order_id>/status", methods=["PUT"])
    @jwt_required()
    def admin_update_order_status(order_id: int):
        admin_user, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True) or {}
        try:
            order = order_service.update_order_status(order_id, payload.get("status"))
        except order_service.OrderError as exc:
            return error_response(exc)

        app.logger.info(
            "Admin %s moved order %s to %s", admin_user.id, order.order_number, order.status
        )
        return jsonify(
            {"success": True, "message": "Order status updated", "status": order.status}
        )

    @app.route("/api/admin/withdrawals", methods=["GET"])
    @jwt_required()
    def admin_list_withdrawals():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        status = str(request.args.get("status") or "").strip().lower() or None
        withdrawals = wallet_service.list_withdrawals(status)
        return jsonify(
            {
                "success": True,
                "withdrawals": [serialize_withdrawal(entry) for entry in withdrawals],
            }
        )

    @app.route("/api/admin/withdrawals/<int:request_id>", methods=["PUT"])
    @jwt_required()
    def admin_process_withdrawal(request_id: int):
        admin_user, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True) or {}
        action = str(payload.get("action") or "").strip().lower()
        if action not in ("approve", "reject"):
            return (
                jsonify({"success": False, "message": "Action must be approve or reject."}),
                400,
            )

        try:
            withdrawal = wallet_service.process_withdrawal(
                request_id, admin_user.id, action == "approve", payload.get("notes")
            )
        except wallet_service.WalletError as exc:
            return error_response(exc)

        return jsonify(
            {
                "success": True,
                "message": f"Withdrawal {withdrawal.status}",
                "withdrawal": serialize_withdrawal(withdrawal),
            }
        )

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    return app


if __name__ == "__main__":
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port)
