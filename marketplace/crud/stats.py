"""Aggregations behind the seller and admin dashboards."""

import datetime as dt
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Account, Order, OrderItem, Product
from ..pricing import as_utc
from . import accounts as account_crud
from . import orders as order_crud
from . import products as product_crud

ZERO = Decimal("0")


def _dec(value) -> Decimal:
    return Decimal(str(value)) if value is not None else ZERO


def order_stats(db: Session, seller_id: Optional[int] = None) -> List[Dict]:
    query = db.query(Order.status, func.count(Order.id), func.sum(Order.total_amount))
    if seller_id is not None:
        query = query.filter(Order.seller_id == seller_id)
    rows = query.group_by(Order.status).order_by(Order.status).all()
    return [
        {"status": status, "count": count, "total_amount": _dec(total)}
        for status, count, total in rows
    ]


def revenue_stats(db: Session, seller_id: Optional[int] = None) -> Dict:
    query = db.query(func.sum(Order.total_amount), func.count(Order.id)).filter(Order.status == "completed")
    if seller_id is not None:
        query = query.filter(Order.seller_id == seller_id)
    total, count = query.one()
    total = _dec(total)
    average = (total / count).quantize(Decimal("0.01")) if count else ZERO
    return {"total_revenue": total, "average_order_value": average, "order_count": count}


def daily_orders(
    db: Session, seller_id: Optional[int] = None, days: int = 7, now: Optional[dt.datetime] = None
) -> List[Dict]:
    now = now or dt.datetime.now(dt.timezone.utc)
    since = now - dt.timedelta(days=days)
    query = db.query(Order.created_at, Order.total_amount).filter(Order.created_at >= since)
    if seller_id is not None:
        query = query.filter(Order.seller_id == seller_id)

    # Bucket in Python so the date formatting doesn't depend on the backend.
    buckets: "OrderedDict[str, Dict]" = OrderedDict()
    for created_at, total in sorted(query.all(), key=lambda row: as_utc(row[0])):
        day = as_utc(created_at).strftime("%Y-%m-%d")
        bucket = buckets.setdefault(day, {"date": day, "count": 0, "revenue": ZERO})
        bucket["count"] += 1
        bucket["revenue"] += _dec(total)
    return list(buckets.values())


def top_products(db: Session, seller_id: Optional[int] = None, limit: int = 10) -> List[Dict]:
    quantity = func.sum(OrderItem.quantity)
    query = (
        db.query(
            OrderItem.product_id,
            func.max(OrderItem.product_title),
            quantity,
            func.sum(OrderItem.quantity * OrderItem.price),
            func.count(OrderItem.id),
        )
        .join(Order, Order.id == OrderItem.order_id)
    )
    if seller_id is not None:
        query = query.filter(Order.seller_id == seller_id)
    rows = query.group_by(OrderItem.product_id).order_by(quantity.desc()).limit(limit).all()

    products = {
        product.id: product
        for product in db.query(Product).filter(Product.id.in_([row[0] for row in rows])).all()
    } if rows else {}

    result = []
    for product_id, snapshot_title, qty, revenue, order_count in rows:
        product = products.get(product_id)
        result.append(
            {
                "product_id": product_id,
                "title": product.title if product else snapshot_title,
                "image": (product.images or [None])[0] if product else None,
                "price": product.price if product else None,
                "quantity": int(qty or 0),
                "revenue": _dec(revenue),
                "order_count": order_count,
            }
        )
    return result


def top_sellers(db: Session, limit: int = 10) -> List[Dict]:
    revenue = func.sum(Order.total_amount)
    rows = (
        db.query(Account.id, Account.name, Account.email, func.count(Order.id), revenue)
        .join(Order, Order.seller_id == Account.id)
        .filter(Order.status == "completed")
        .group_by(Account.id, Account.name, Account.email)
        .order_by(revenue.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "seller_id": seller_id,
            "name": name,
            "email": email,
            "order_count": count,
            "revenue": _dec(total),
        }
        for seller_id, name, email, count, total in rows
    ]


def recent_orders(db: Session, seller_id: Optional[int] = None, limit: int = 5) -> List[Order]:
    orders, _ = order_crud.list_orders(db, seller_id=seller_id, skip=0, limit=limit)
    return orders


def seller_dashboard(db: Session, seller_id: int) -> Dict:
    revenue = revenue_stats(db, seller_id=seller_id)
    return {
        "stats": {
            "total_products": product_crud.count_products(db, seller_id=seller_id),
            "active_products": product_crud.count_products(db, seller_id=seller_id, active=True),
            "total_orders": order_crud.count_orders(db, seller_id=seller_id),
            "total_revenue": revenue["total_revenue"],
            "average_order_value": revenue["average_order_value"],
            "completed_orders": revenue["order_count"],
        },
        "order_stats": order_stats(db, seller_id=seller_id),
        "revenue_stats": revenue,
        "daily_orders": daily_orders(db, seller_id=seller_id),
        "top_products": top_products(db, seller_id=seller_id),
        "recent_orders": recent_orders(db, seller_id=seller_id, limit=5),
    }


def admin_dashboard(db: Session) -> Dict:
    revenue = revenue_stats(db)
    return {
        "stats": {
            "total_users": account_crud.count_accounts(db),
            "total_sellers": account_crud.count_accounts(db, role="seller"),
            "total_buyers": account_crud.count_accounts(db, role="buyer"),
            "total_products": product_crud.count_products(db),
            "total_orders": order_crud.count_orders(db),
            "total_revenue": revenue["total_revenue"],
            "average_order_value": revenue["average_order_value"],
            "completed_orders": revenue["order_count"],
        },
        "order_stats": order_stats(db),
        "revenue_stats": revenue,
        "daily_orders": daily_orders(db),
        "top_products": top_products(db),
        "top_sellers": top_sellers(db),
        "recent_orders": recent_orders(db, limit=10),
    }
