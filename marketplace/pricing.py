import datetime as dt
from decimal import Decimal
from typing import Optional


def as_utc(value: dt.datetime) -> dt.datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def discount_is_active(
    price: Decimal,
    discount_price: Optional[Decimal],
    discount_end_date: Optional[dt.datetime],
    now: Optional[dt.datetime] = None,
) -> bool:
    """A discount counts only while it undercuts the base price and has not expired."""
    if discount_price is None or Decimal(discount_price) >= Decimal(price):
        return False
    if discount_end_date is None:
        return True
    now = now or dt.datetime.now(dt.timezone.utc)
    return as_utc(discount_end_date) > as_utc(now)


def effective_price(
    price: Decimal,
    discount_price: Optional[Decimal] = None,
    discount_end_date: Optional[dt.datetime] = None,
    now: Optional[dt.datetime] = None,
) -> Decimal:
    if discount_is_active(price, discount_price, discount_end_date, now):
        return Decimal(discount_price)
    return Decimal(price)


def product_effective_price(product, now: Optional[dt.datetime] = None) -> Decimal:
    return effective_price(product.price, product.discount_price, product.discount_end_date, now)
