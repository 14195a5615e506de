from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..auth import require_roles
from ..crud import categories as category_crud
from ..database import get_db
from ..errors import Forbidden, NotFound
from ..models import Account

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/categories", tags=["categories"])

seller_only = require_roles(schemas.Role.SELLER)


def _owned_category(db: Session, category_id: int, seller: Account, action: str):
    category = category_crud.get_category(db, category_id)
    if category is None:
        raise NotFound("Category not found")
    if category.created_by != seller.id:
        raise Forbidden(f"Not authorized to {action} this category")
    return category


@router.get("/")
def list_categories(
    is_active: Optional[bool] = Query(None, alias="isActive"),
    db: Session = Depends(get_db),
):
    categories = category_crud.list_categories(db, is_active=is_active)
    return schemas.envelope({"categories": [schemas.dump(schemas.CategoryOut, c) for c in categories]})


@router.get("/seller")
def list_seller_categories(
    current_user: Account = Depends(seller_only),
    db: Session = Depends(get_db),
):
    categories = category_crud.list_categories(db, created_by=current_user.id)
    return schemas.envelope({"categories": [schemas.dump(schemas.CategoryOut, c) for c in categories]})


@router.get("/slug/{slug}")
def get_category_by_slug(slug: str, db: Session = Depends(get_db)):
    category = category_crud.get_category_by_slug(db, slug)
    if category is None:
        raise NotFound("Category not found")
    return schemas.envelope({"category": schemas.dump(schemas.CategoryOut, category)})


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_category(
    payload: schemas.CategoryCreate,
    current_user: Account = Depends(seller_only),
    db: Session = Depends(get_db),
):
    category = category_crud.create_category(db, current_user.id, payload.model_dump())
    logger.info("category.created", category_id=category.id, slug=category.slug)
    return schemas.envelope(
        {"category": schemas.dump(schemas.CategoryOut, category)},
        message="Category created successfully",
    )


@router.put("/{category_id:int}")
def update_category(
    category_id: int,
    payload: schemas.CategoryUpdate,
    current_user: Account = Depends(seller_only),
    db: Session = Depends(get_db),
):
    category = _owned_category(db, category_id, current_user, "update")
    category = category_crud.update_category(db, category, payload.model_dump(exclude_unset=True))
    return schemas.envelope(
        {"category": schemas.dump(schemas.CategoryOut, category)},
        message="Category updated successfully",
    )


@router.delete("/{category_id:int}")
def delete_category(
    category_id: int,
    current_user: Account = Depends(seller_only),
    db: Session = Depends(get_db),
):
    category = _owned_category(db, category_id, current_user, "delete")
    category_crud.delete_category(db, category)
    logger.info("category.deleted", category_id=category_id)
    return schemas.envelope(message="Category deleted successfully")
