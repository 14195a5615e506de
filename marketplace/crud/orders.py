import secrets
import string
import time
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session, joinedload

from ..models import Order

_BASE36 = string.digits + string.ascii_uppercase


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_order_number() -> str:
    """``ORD-<base36 millis>-<6 random chars>``, upper case."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"ORD-{_base36(int(time.time() * 1000))}-{suffix}"


def _with_relations(query):
    return query.options(
        joinedload(Order.items),
        joinedload(Order.buyer),
        joinedload(Order.seller),
    )


def get_order(db: Session, order_id: int) -> Optional[Order]:
    return _with_relations(db.query(Order)).filter(Order.id == order_id).first()


def list_orders(
    db: Session,
    *,
    buyer_id: Optional[int] = None,
    seller_id: Optional[int] = None,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 10,
) -> Tuple[List[Order], int]:
    query = db.query(Order)
    if buyer_id is not None:
        query = query.filter(Order.buyer_id == buyer_id)
    if seller_id is not None:
        query = query.filter(Order.seller_id == seller_id)
    if status:
        query = query.filter(Order.status == status)

    total = query.count()
    # Page over ids first so the joined items don't skew offset/limit.
    ids = [
        order_id
        for (order_id,) in query.with_entities(Order.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    ]
    if not ids:
        return [], total

    orders = _with_relations(db.query(Order)).filter(Order.id.in_(ids)).all()
    by_id = {order.id: order for order in orders}
    return [by_id[order_id] for order_id in ids], total


def count_orders(db: Session, *, seller_id: Optional[int] = None, buyer_id: Optional[int] = None) -> int:
    query = db.query(Order)
    if seller_id is not None:
        query = query.filter(Order.seller_id == seller_id)
    if buyer_id is not None:
        query = query.filter(Order.buyer_id == buyer_id)
    return query.count()
