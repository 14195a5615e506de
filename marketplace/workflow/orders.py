"""Order placement and the seller-driven status lifecycle.

Placement validates the whole cart, snapshots prices and decrements stock
in one transaction. Notifications and domain events go out through the
dispatcher only after the commit, so they never affect the result.
"""

from __future__ import annotations

import datetime as dt
from collections import OrderedDict
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import pricing
from ..crud import orders as order_crud
from ..crud import products as product_crud
from ..errors import (
    Conflict,
    EmptyOrder,
    Forbidden,
    Inactive,
    InsufficientStock,
    InvalidState,
    MixedSellers,
    NotFound,
    ValidationFailed,
)
from ..messaging import EventPublisher
from ..models import Order, OrderItem
from ..notifications import NotificationDispatcher
from ..notifications import messages

logger = structlog.get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 5

ALLOWED_TRANSITIONS: Dict[str, frozenset] = {
    "pending": frozenset({"approved", "rejected", "cancelled"}),
    "approved": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"out-for-delivery", "cancelled"}),
    "out-for-delivery": frozenset({"completed"}),
    "completed": frozenset(),
    "rejected": frozenset(),
    "cancelled": frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, nxt in ALLOWED_TRANSITIONS.items() if not nxt)


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


def _merge_items(items: Iterable) -> "OrderedDict[int, int]":
    """Combine repeated product ids, keeping first-seen order."""
    merged: "OrderedDict[int, int]" = OrderedDict()
    for item in items:
        try:
            product_id = int(_field(item, "product_id"))
            quantity = _field(item, "quantity")
        except (KeyError, AttributeError, TypeError, ValueError):
            raise ValidationFailed("Invalid order items")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationFailed("Quantity must be at least 1")
        merged[product_id] = merged.get(product_id, 0) + quantity
    return merged


def _field(item, name: str):
    if isinstance(item, dict):
        return item[name]
    return getattr(item, name)


class OrderWorkflow:
    def __init__(
        self,
        db: Session,
        *,
        dispatcher: Optional[NotificationDispatcher] = None,
        events: Optional[EventPublisher] = None,
        clock: Optional[Callable[[], dt.datetime]] = None,
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher
        self.events = events
        self._clock = clock or (lambda: dt.datetime.now(dt.timezone.utc))

    # -----------------------------
    # Placement
    # -----------------------------

    def create(
        self,
        buyer_id: int,
        items: Iterable,
        shipping_address: str,
        payment_method: str = "cash-on-delivery",
    ) -> Order:
        requested = _merge_items(items)
        if not requested:
            raise EmptyOrder("Invalid order items")

        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            try:
                order_id = self._place(buyer_id, requested, shipping_address, payment_method)
            except IntegrityError:
                self.db.rollback()
                logger.warning("order.number_collision", attempt=attempt)
                continue
            except Exception:
                self.db.rollback()
                raise
            break
        else:
            raise Conflict("Could not allocate a unique order number, please retry")

        order = order_crud.get_order(self.db, order_id)
        logger.info(
            "order.created",
            order_id=order.id,
            order_number=order.order_number,
            buyer_id=buyer_id,
            seller_id=order.seller_id,
            total_amount=str(order.total_amount),
        )
        self._after_create(order)
        return order

    def _place(
        self,
        buyer_id: int,
        requested: "OrderedDict[int, int]",
        shipping_address: str,
        payment_method: str,
    ) -> int:
        now = self._clock()
        seller_id: Optional[int] = None
        lines: List[OrderItem] = []
        total = Decimal("0")

        for product_id, quantity in requested.items():
            product = product_crud.get_product(self.db, product_id)
            if product is None:
                raise NotFound(f"Product {product_id} not found")
            if not product.is_active:
                raise Inactive(f"Product {product.title} is not available")
            if product.stock < quantity:
                raise InsufficientStock(f"Insufficient stock for {product.title}")
            if seller_id is None:
                seller_id = product.seller_id
            elif product.seller_id != seller_id:
                raise MixedSellers("All products must be from the same seller")

            unit_price = pricing.product_effective_price(product, now)
            lines.append(
                OrderItem(
                    product_id=product.id,
                    product_title=product.title,
                    product_image=(product.images or [None])[0],
                    quantity=quantity,
                    price=unit_price,
                )
            )
            total += unit_price * quantity

        if seller_id is None:
            raise EmptyOrder("Invalid order items")

        order = Order(
            order_number=order_crud.generate_order_number(),
            buyer_id=buyer_id,
            seller_id=seller_id,
            total_amount=total,
            shipping_address=shipping_address,
            payment_method=payment_method,
            payment_status="pending",
            status="pending",
            items=lines,
        )
        self.db.add(order)
        self.db.flush()

        # The guarded update is the real stock check; the read above may be stale.
        for line in lines:
            if not product_crud.decrement_stock(self.db, line.product_id, line.quantity):
                raise InsufficientStock(f"Insufficient stock for {line.product_title}")

        self.db.commit()
        return order.id

    def _after_create(self, order: Order) -> None:
        if order.buyer is not None:
            subject, body = messages.order_confirmation(order)
            self._notify("order_confirmation", order.buyer.email, subject, body)
        self._publish(
            "order.created",
            {
                "order_id": order.id,
                "order_number": order.order_number,
                "buyer_id": order.buyer_id,
                "seller_id": order.seller_id,
                "total_amount": str(order.total_amount),
                "items": [{"product_id": i.product_id, "quantity": i.quantity} for i in order.items],
            },
        )

    # -----------------------------
    # Status lifecycle
    # -----------------------------

    def update_status(self, order_id: int, seller_id: int, new_status: str) -> Order:
        new_status = getattr(new_status, "value", new_status)
        order = order_crud.get_order(self.db, order_id)
        if order is None:
            raise NotFound("Order not found")
        if order.seller_id != seller_id:
            raise Forbidden("Not authorized to update this order")

        previous = order.status
        if not can_transition(previous, new_status):
            raise InvalidState(f"Cannot change order status from {previous} to {new_status}")

        order.status = new_status
        self.db.commit()
        order = order_crud.get_order(self.db, order_id)
        logger.info("order.status_changed", order_id=order.id, previous=previous, status=new_status)

        if order.buyer is not None:
            if new_status == "completed":
                subject, body = messages.order_delivered(order)
                self._notify("order_delivered", order.buyer.email, subject, body)
            else:
                subject, body = messages.status_update(order, new_status)
                self._notify("order_status_update", order.buyer.email, subject, body)
        self._publish(
            "order.status_changed",
            {
                "order_id": order.id,
                "order_number": order.order_number,
                "previous_status": previous,
                "status": new_status,
            },
        )
        return order

    # -----------------------------
    # Side effects
    # -----------------------------

    def _notify(self, event: str, to_email: str, subject: str, body: str) -> None:
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.send_email(event, to_email=to_email, subject=subject, body=body)
        except Exception:
            logger.exception("notification.dispatch_failed", notification=event)

    def _publish(self, routing_key: str, payload: dict) -> None:
        if self.events is None or not self.events.enabled or self.dispatcher is None:
            return
        try:
            self.dispatcher.submit(routing_key, self.events.publish, routing_key, payload)
        except Exception:
            logger.exception("event.dispatch_failed", routing_key=routing_key)
