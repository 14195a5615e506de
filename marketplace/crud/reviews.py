from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from ..errors import Conflict
from ..models import Review


def get_review_for_order(db: Session, order_id: int) -> Optional[Review]:
    return db.query(Review).filter(Review.order_id == order_id).first()


def add_review(
    db: Session,
    *,
    product_id: int,
    buyer_id: int,
    order_id: int,
    rating: int,
    comment: Optional[str] = None,
) -> Review:
    db_review = Review(
        product_id=product_id,
        buyer_id=buyer_id,
        order_id=order_id,
        rating=rating,
        comment=comment,
    )
    db.add(db_review)
    try:
        db.commit()
    except IntegrityError:
        # unique(order_id) lost a race with a concurrent review
        db.rollback()
        raise Conflict("Review already exists for this order")
    db.refresh(db_review)
    return db_review


def list_product_reviews(db: Session, product_id: int) -> List[Review]:
    return (
        db.query(Review)
        .options(joinedload(Review.buyer))
        .filter(Review.product_id == product_id)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .all()
    )
