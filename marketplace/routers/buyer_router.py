from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..auth import require_roles
from ..crud import orders as order_crud
from ..crud import reviews as review_crud
from ..database import get_db
from ..deps import get_review_service
from ..errors import NotFound
from ..models import Account
from ..workflow import ReviewService

router = APIRouter(prefix="/api/buyer", tags=["buyer"])

buyer_only = require_roles(schemas.Role.BUYER)


@router.get("/orders")
def list_my_orders(
    order_status: Optional[schemas.OrderStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: Account = Depends(buyer_only),
    db: Session = Depends(get_db),
):
    orders, total = order_crud.list_orders(
        db,
        buyer_id=current_user.id,
        status=order_status.value if order_status else None,
        skip=(page - 1) * limit,
        limit=limit,
    )
    return schemas.envelope(
        {
            "orders": [schemas.dump(schemas.OrderOut, o) for o in orders],
            "pagination": schemas.Pagination.build(total, page, limit).model_dump(),
        }
    )


@router.get("/orders/{order_id:int}")
def get_my_order(
    order_id: int,
    current_user: Account = Depends(buyer_only),
    db: Session = Depends(get_db),
):
    order = order_crud.get_order(db, order_id)
    # Other buyers' orders are reported as missing.
    if order is None or order.buyer_id != current_user.id:
        raise NotFound("Order not found")

    review = review_crud.get_review_for_order(db, order.id)
    return schemas.envelope(
        {
            "order": schemas.dump(schemas.OrderOut, order),
            "review": schemas.dump(schemas.ReviewOut, review) if review else None,
        }
    )


@router.post("/orders/{order_id:int}/review", status_code=status.HTTP_201_CREATED)
def create_review(
    order_id: int,
    payload: schemas.ReviewCreate,
    current_user: Account = Depends(buyer_only),
    reviews: ReviewService = Depends(get_review_service),
):
    review = reviews.create(
        buyer_id=current_user.id,
        order_id=order_id,
        rating=payload.rating,
        comment=payload.comment,
    )
    return schemas.envelope(
        {"review": schemas.dump(schemas.ReviewOut, review)},
        message="Review created successfully",
    )
