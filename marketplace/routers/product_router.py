from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import schemas
from ..crud import products as product_crud
from ..crud import reviews as review_crud
from ..database import get_db
from ..errors import NotFound, ValidationFailed

router = APIRouter(prefix="/api/products", tags=["products"])


def _page(products, total: int, page: int, limit: int) -> dict:
    return schemas.envelope(
        {
            "products": [schemas.dump(schemas.ProductWithSeller, p) for p in products],
            "pagination": schemas.Pagination.build(total, page, limit).model_dump(),
        }
    )


@router.get("/")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    category: Optional[str] = None,
    min_price: Optional[Decimal] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[Decimal] = Query(None, alias="maxPrice", ge=0),
    is_hot_collection: Optional[bool] = Query(None, alias="isHotCollection"),
    tag: Optional[str] = None,
    db: Session = Depends(get_db),
):
    products, total = product_crud.list_products(
        db,
        category=category,
        min_price=min_price,
        max_price=max_price,
        hot_only=bool(is_hot_collection),
        tag=tag,
        skip=(page - 1) * limit,
        limit=limit,
    )
    return _page(products, total, page, limit)


@router.get("/search")
def search_products(
    q: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db: Session = Depends(get_db),
):
    if not q or not q.strip():
        raise ValidationFailed("Search query is required")

    products, total = product_crud.list_products(
        db, search=q.strip(), skip=(page - 1) * limit, limit=limit
    )
    return _page(products, total, page, limit)


@router.get("/category/{category}")
def products_by_category(
    category: str,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db: Session = Depends(get_db),
):
    products, total = product_crud.list_products(
        db, category=category, skip=(page - 1) * limit, limit=limit
    )
    return _page(products, total, page, limit)


@router.get("/{product_id:int}")
def get_product(product_id: int, db: Session = Depends(get_db)):
    product = product_crud.get_product_with_seller(db, product_id)
    if product is None:
        raise NotFound("Product not found")

    reviews = review_crud.list_product_reviews(db, product_id)
    return schemas.envelope(
        {
            "product": schemas.dump(schemas.ProductWithSeller, product),
            "reviews": [schemas.dump(schemas.ProductReviewOut, r) for r in reviews],
        }
    )
