import re
import time
from typing import List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import Conflict
from ..models import Category
from .products import count_products_in_category

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

SLUG_ATTEMPTS = 5


def slugify(name: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to one hyphen, trim hyphens."""
    slug = _NON_ALNUM.sub("-", (name or "").strip().lower()).strip("-")
    if not slug:
        slug = f"category-{int(time.time() * 1000)}"
    return slug


def get_category(db: Session, category_id: int) -> Optional[Category]:
    return db.get(Category, category_id)


def get_category_by_slug(db: Session, slug: str) -> Optional[Category]:
    return db.query(Category).filter(Category.slug == slug).first()


def get_category_by_name(db: Session, name: str, exclude_id: Optional[int] = None) -> Optional[Category]:
    query = db.query(Category).filter(func.lower(Category.name) == name.strip().lower())
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    return query.first()


def unique_slug(db: Session, base: str, exclude_id: Optional[int] = None) -> str:
    """Return ``base`` or the first free ``base-N`` (N >= 2)."""
    query = db.query(Category.slug).filter(
        or_(Category.slug == base, Category.slug.like(f"{base}-%"))
    )
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    taken = {slug for (slug,) in query.all()}
    if base not in taken:
        return base
    n = 2
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


def list_categories(
    db: Session, *, is_active: Optional[bool] = None, created_by: Optional[int] = None
) -> List[Category]:
    query = db.query(Category)
    if is_active is not None:
        query = query.filter(Category.is_active.is_(is_active))
    if created_by is not None:
        query = query.filter(Category.created_by == created_by)
    return query.order_by(Category.name.asc()).all()


def _save_with_slug(db: Session, category: Category, name: str) -> Category:
    base = slugify(name)
    for _ in range(SLUG_ATTEMPTS):
        category.slug = unique_slug(db, base, exclude_id=category.id)
        db.add(category)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            # Either the name or the slug was taken concurrently.
            if get_category_by_name(db, name, exclude_id=category.id) is not None:
                raise Conflict("Category with this name already exists")
            continue
        db.refresh(category)
        return category
    raise Conflict("Category with similar name already exists")


def create_category(db: Session, seller_id: int, category_data: dict) -> Category:
    name = category_data["name"].strip()
    if get_category_by_name(db, name) is not None:
        raise Conflict("Category with this name already exists")

    category = Category(
        name=name,
        description=category_data.get("description"),
        image=category_data.get("image"),
        is_active=category_data.get("is_active", True),
        created_by=seller_id,
    )
    return _save_with_slug(db, category, name)


def update_category(db: Session, category: Category, update_data: dict) -> Category:
    new_name = update_data.pop("name", None)
    for key, value in update_data.items():
        if value is not None:
            setattr(category, key, value)

    if new_name is not None and new_name.strip() != category.name:
        new_name = new_name.strip()
        if get_category_by_name(db, new_name, exclude_id=category.id) is not None:
            raise Conflict("Category with this name already exists")
        category.name = new_name
        return _save_with_slug(db, category, new_name)

    db.commit()
    db.refresh(category)
    return category


def delete_category(db: Session, category: Category) -> None:
    products_count = count_products_in_category(db, category.name)
    if products_count > 0:
        raise Conflict(f"Cannot delete category. It is used by {products_count} product(s)")
    db.delete(category)
    db.commit()
