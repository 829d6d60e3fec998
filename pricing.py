"""Discount-aware unit pricing."""
import math
from datetime import datetime, timezone
from typing import Optional

from schemas import Product


def as_utc(value: datetime) -> datetime:
    # Mongo hands back naive datetimes that are UTC by convention
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def money(amount: float) -> float:
    return round(amount, 2)


def discount_applies(product: Product, now: Optional[datetime] = None) -> bool:
    discount = product.discount
    if discount is None or not discount.is_active:
        return False
    value = discount.value
    if value is None or not math.isfinite(value) or value <= 0:
        return False
    now = as_utc(now or datetime.now(timezone.utc))
    if discount.starts_at is not None and as_utc(discount.starts_at) > now:
        return False
    if discount.ends_at is not None and as_utc(discount.ends_at) < now:
        return False
    return discount.type in ("percentage", "flat")


def effective_price(product: Product, now: Optional[datetime] = None) -> float:
    """Return the post-discount unit price of ``product`` at ``now``.

    Any discount that is inactive, out of its window or oddly shaped leaves the
    base price untouched. The result is never negative.
    """
    price = product.price
    if not discount_applies(product, now):
        return price
    discount = product.discount
    if discount.type == "percentage":
        reduced = price - price * discount.value / 100
    else:
        reduced = price - discount.value
    return max(money(reduced), 0.0)
