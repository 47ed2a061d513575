import math
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.orm import aliased

from helpers import (
    generate_sku,
    parse_bool,
    parse_int,
    parse_money,
    safe_positive_int,
    slugify,
)
from models import (
    Brand,
    Category,
    Order,
    OrderItem,
    Product,
    ProductImage,
    Review,
    User,
    db,
)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
SORT_OPTIONS = {
    "price_asc": (Product.price.asc(),),
    "price_desc": (Product.price.desc(),),
    "newest": (Product.created_at.desc(),),
    "popular": (Product.sales_count.desc(),),
    "best_sellers": (Product.sales_count.desc(),),
}


def _primary_image_subquery():
    image = aliased(ProductImage)
    return (
        select(image.image_url)
        .where(image.product_id == Product.id, image.is_primary.is_(True))
        .order_by(image.display_order, image.id)
        .limit(1)
        .correlate(Product)
        .scalar_subquery()
    )


def _rating_subqueries():
    average = (
        select(func.avg(Review.rating))
        .where(Review.product_id == Product.id)
        .correlate(Product)
        .scalar_subquery()
    )
    count = (
        select(func.count(Review.id))
        .where(Review.product_id == Product.id)
        .correlate(Product)
        .scalar_subquery()
    )
    return average, count


def build_product_filters(args) -> List:
    conditions = [Product.is_active.is_(True), Product.is_approved.is_(True)]

    category = str(args.get("category") or "").strip()
    if category:
        category_id = parse_int(category)
        if category_id is not None:
            conditions.append(Product.category_id == category_id)
        else:
            conditions.append(Category.slug == category)

    brand_id = parse_int(args.get("brand"))
    if brand_id is not None:
        conditions.append(Product.brand_id == brand_id)

    min_price = parse_money(args.get("minPrice"))
    if min_price is not None:
        conditions.append(Product.price >= min_price)

    max_price = parse_money(args.get("maxPrice"))
    if max_price is not None:
        conditions.append(Product.price <= max_price)

    search = str(args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        conditions.append(
            or_(
                Product.name.ilike(pattern),
                Product.description.ilike(pattern),
                User.name.ilike(pattern),
            )
        )

    if parse_bool(args.get("featured")):
        conditions.append(Product.is_featured.is_(True))

    if parse_bool(args.get("sale")):
        conditions.append(
            and_(Product.discount_price.isnot(None), Product.discount_price < Product.price)
        )

    return conditions


def search_products(args) -> Tuple[List, Dict[str, int]]:
    """Filtered, sorted and paginated product listing for the storefront."""
    page = safe_positive_int(args.get("page"), 0) or 1
    limit = min(safe_positive_int(args.get("limit"), 0) or DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE)
    offset = (page - 1) * limit

    conditions = build_product_filters(args)
    average_rating, review_count = _rating_subqueries()
    order_by = SORT_OPTIONS.get(str(args.get("sort") or ""), (Product.created_at.desc(),))

    statement = (
        select(
            Product,
            User.name.label("seller_name"),
            Category.name.label("category_name"),
            Brand.name.label("brand_name"),
            _primary_image_subquery().label("primary_image"),
            average_rating.label("avg_rating"),
            review_count.label("review_count"),
        )
        .outerjoin(User, Product.seller_id == User.id)
        .outerjoin(Category, Product.category_id == Category.id)
        .outerjoin(Brand, Product.brand_id == Brand.id)
        .where(*conditions)
        .order_by(*order_by, Product.id.desc())
        .limit(limit)
        .offset(offset)
    )
    rows = list(db.session.execute(statement))

    count_statement = (
        select(func.count(Product.id))
        .select_from(Product)
        .outerjoin(User, Product.seller_id == User.id)
        .outerjoin(Category, Product.category_id == Category.id)
        .where(*conditions)
    )
    total = db.session.execute(count_statement).scalar() or 0

    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }
    return rows, pagination


def get_product_by_slug(slug: str) -> Optional[Product]:
    return db.session.execute(
        select(Product).where(Product.slug == slug, Product.is_active.is_(True))
    ).scalar_one_or_none()


def rating_summary(product_id: int) -> Dict[str, object]:
    statement = select(
        func.avg(Review.rating),
        func.count(Review.id),
        *(
            func.sum(case((Review.rating == stars, 1), else_=0))
            for stars in (5, 4, 3, 2, 1)
        ),
    ).where(Review.product_id == product_id, Review.is_approved.is_(True))
    average, total, five, four, three, two, one = db.session.execute(statement).one()
    return {
        "avg_rating": round(float(average), 2) if average is not None else None,
        "total_reviews": int(total or 0),
        "five_star": int(five or 0),
        "four_star": int(four or 0),
        "three_star": int(three or 0),
        "two_star": int(two or 0),
        "one_star": int(one or 0),
    }


def approved_reviews(product_id: int, limit: Optional[int] = None) -> List[Review]:
    statement = (
        select(Review)
        .where(Review.product_id == product_id, Review.is_approved.is_(True))
        .order_by(Review.created_at.desc(), Review.id.desc())
    )
    if limit:
        statement = statement.limit(limit)
    return list(db.session.execute(statement).scalars())


def has_delivered_purchase(user_id: int, product_id: int, order_id: Optional[int] = None) -> bool:
    statement = (
        select(Order.id)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .where(
            Order.customer_id == user_id,
            OrderItem.product_id == product_id,
            Order.status == "delivered",
        )
    )
    if order_id is not None:
        statement = statement.where(Order.id == order_id)
    return db.session.execute(statement.limit(1)).first() is not None


def unique_product_slug(name: str, exclude_id: Optional[int] = None) -> str:
    base_slug = slugify(name)
    slug = base_slug
    suffix = 0
    while True:
        statement = select(Product.id).where(Product.slug == slug)
        if exclude_id is not None:
            statement = statement.where(Product.id != exclude_id)
        if db.session.execute(statement).first() is None:
            return slug
        suffix += 1
        slug = f"{base_slug}-{suffix}"


def unique_product_sku(name: str) -> str:
    base_sku = generate_sku(name)
    sku = base_sku
    suffix = 0
    while db.session.execute(select(Product.id).where(Product.sku == sku)).first() is not None:
        suffix += 1
        sku = f"{base_sku}{suffix}"
    return sku


def resolve_brand_id(value) -> Optional[int]:
    """Accept an existing brand id or a brand name; unknown names create the brand."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    brand_id = parse_int(value)
    if brand_id is not None:
        return brand_id

    brand_name = " ".join(str(value).split())
    existing = db.session.execute(
        select(Brand.id).where(Brand.name == brand_name).limit(1)
    ).scalar()
    if existing is not None:
        return existing

    base_slug = slugify(brand_name)
    slug = base_slug
    suffix = 0
    while db.session.execute(select(Brand.id).where(Brand.slug == slug)).first() is not None:
        suffix += 1
        slug = f"{base_slug}-{suffix}"
    brand = Brand(name=brand_name, slug=slug)
    db.session.add(brand)
    db.session.flush()
    return brand.id


def list_active_categories() -> List:
    product_count = (
        select(func.count(Product.id))
        .where(Product.category_id == Category.id, Product.is_active.is_(True))
        .correlate(Category)
        .scalar_subquery()
    )
    statement = (
        select(Category, product_count.label("product_count"))
        .where(Category.is_active.is_(True))
        .order_by(Category.display_order, Category.name)
    )
    return list(db.session.execute(statement))


def unique_category_slug(name: str, exclude_id: Optional[int] = None) -> str:
    base_slug = slugify(name)
    slug = base_slug
    suffix = 0
    while True:
        statement = select(Category.id).where(Category.slug == slug)
        if exclude_id is not None:
            statement = statement.where(Category.id != exclude_id)
        if db.session.execute(statement).first() is None:
            return slug
        suffix += 1
        slug = f"{base_slug}-{suffix}"
