from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..crud import orders as order_crud
from ..crud import reviews as review_crud
from ..errors import Conflict, Forbidden, InvalidState, NotFound, ValidationFailed
from ..models import Review

logger = structlog.get_logger(__name__)

MAX_COMMENT_LENGTH = 500


class ReviewService:
    """One rating per completed order, written by the order's buyer."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def create(self, buyer_id: int, order_id: int, rating: int, comment: Optional[str] = None) -> Review:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationFailed("Rating must be between 1 and 5")
        if comment is not None and len(comment) > MAX_COMMENT_LENGTH:
            raise ValidationFailed(f"Comment cannot exceed {MAX_COMMENT_LENGTH} characters")

        order = order_crud.get_order(self.db, order_id)
        if order is None:
            raise NotFound("Order not found")
        if order.buyer_id != buyer_id:
            raise Forbidden("Not authorized to review this order")
        if order.status != "completed":
            raise InvalidState("Can only review completed orders")
        if review_crud.get_review_for_order(self.db, order_id) is not None:
            raise Conflict("Review already exists for this order")
        if not order.items:
            raise InvalidState("Order has no items to review")

        # Reviews attach to the order's first line item.
        review = review_crud.add_review(
            self.db,
            product_id=order.items[0].product_id,
            buyer_id=buyer_id,
            order_id=order.id,
            rating=rating,
            comment=comment,
        )
        logger.info("review.created", review_id=review.id, order_id=order.id, product_id=review.product_id)
        return review
