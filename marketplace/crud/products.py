import json
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import String, cast, or_, update
from sqlalchemy.orm import Session, joinedload

from ..models import Product


def create_product(db: Session, seller_id: int, product_data: dict) -> Product:
    db_product = Product(**{**product_data, "seller_id": seller_id})
    db.add(db_product)
    db.commit()
    db.refresh(db_product)
    return db_product


def get_product(db: Session, product_id: int) -> Optional[Product]:
    return db.query(Product).filter(Product.id == product_id).first()


def get_product_with_seller(db: Session, product_id: int) -> Optional[Product]:
    return (
        db.query(Product)
        .options(joinedload(Product.seller))
        .filter(Product.id == product_id)
        .first()
    )


LIKE_ESCAPE = "\\"


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _tag_pattern(tag: str) -> str:
    # tags is a JSON array; match the whole quoted element in its text form
    return f"%{_escape_like(json.dumps(tag, ensure_ascii=False))}%"


def list_products(
    db: Session,
    *,
    active_only: bool = True,
    is_active: Optional[bool] = None,
    seller_id: Optional[int] = None,
    category: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    hot_only: bool = False,
    tag: Optional[str] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 12,
) -> Tuple[List[Product], int]:
    query = db.query(Product)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    elif is_active is not None:
        query = query.filter(Product.is_active.is_(is_active))
    if seller_id is not None:
        query = query.filter(Product.seller_id == seller_id)
    if category:
        query = query.filter(Product.category == category)
    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)
    if hot_only:
        query = query.filter(Product.is_hot_collection.is_(True))
    if tag:
        query = query.filter(cast(Product.tags, String).like(_tag_pattern(tag), escape=LIKE_ESCAPE))
    if search:
        search_pattern = f"%{_escape_like(search)}%"
        query = query.filter(
            or_(
                Product.title.ilike(search_pattern, escape=LIKE_ESCAPE),
                Product.description.ilike(search_pattern, escape=LIKE_ESCAPE),
                cast(Product.tags, String).ilike(search_pattern, escape=LIKE_ESCAPE),
            )
        )

    total = query.count()
    products = (
        query.options(joinedload(Product.seller))
        .order_by(Product.created_at.desc(), Product.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return products, total


def update_product(db: Session, db_product: Product, update_data: dict) -> Product:
    for key, value in update_data.items():
        setattr(db_product, key, value)
    db.commit()
    db.refresh(db_product)
    return db_product


def delete_product(db: Session, db_product: Product) -> None:
    db.delete(db_product)
    db.commit()


def decrement_stock(db: Session, product_id: int, quantity: int) -> bool:
    """Atomically subtract ``quantity`` unless that would take stock below zero.

    Runs inside the caller's transaction and does not commit. Returns False
    when the guarded update matched no row.
    """
    if quantity <= 0:
        raise ValueError("quantity must be > 0")

    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def count_products(db: Session, *, seller_id: Optional[int] = None, active: Optional[bool] = None) -> int:
    query = db.query(Product)
    if seller_id is not None:
        query = query.filter(Product.seller_id == seller_id)
    if active is not None:
        query = query.filter(Product.is_active.is_(active))
    return query.count()


def count_products_in_category(db: Session, category_name: str) -> int:
    return db.query(Product).filter(Product.category == category_name).count()
