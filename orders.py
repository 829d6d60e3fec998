"""Order assembly, reads and the order status lifecycle.

Orders are immutable snapshots: each line carries the name and unit price
resolved at checkout, so later catalog edits never reach a placed order.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, EmailStr, Field, model_validator
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import settings
from cart import CartStore
from catalog import get_product
from database import create_document, get_documents, next_sequence, to_oid
from errors import DependencyError, NotFoundError, ValidationError
from notifications import Mailer, send_order_confirmation
from pricing import effective_price, money
from schemas import (
    CartOwner,
    Customization,
    Order,
    OrderLine,
    OrderStatus,
    PaymentStatus,
    ShippingAddress,
    StatusChange,
)

logger = logging.getLogger(__name__)

REQUIRED_ADDRESS_FIELDS = ("full_name", "address_line1", "city", "country")
ORDER_NUMBER_ATTEMPTS = 3

# Allowed moves; delivered and cancelled are terminal
ORDER_TRANSITIONS = {
    "pending": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered", "cancelled"},
    "delivered": set(),
    "cancelled": set(),
}


class OrderLineIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    customization: Optional[Customization] = None


class Buyer(BaseModel):
    """Either a signed-in user or a guest identified by email."""
    user_id: Optional[str] = None
    guest_email: Optional[EmailStr] = None
    contact_email: Optional[str] = None

    @model_validator(mode="after")
    def _one_identity(self):
        if (self.user_id is None) == (self.guest_email is None):
            raise ValueError("A buyer is exactly one of a user or a guest email")
        return self

    @classmethod
    def for_user(cls, user_id: str, email: Optional[str] = None) -> "Buyer":
        return cls(user_id=user_id, contact_email=email)

    @classmethod
    def for_guest(cls, email: str) -> "Buyer":
        email = email.strip().lower()
        return cls(guest_email=email, contact_email=email)


def generate_order_number(db: Database, now: datetime) -> str:
    seq = next_sequence(db, "order_number")
    return f"VG{now:%Y%m%d}-{seq:06d}"


def _check_address(address: Optional[ShippingAddress]) -> ShippingAddress:
    if address is None:
        raise ValidationError("Shipping address is required", field="shipping_address")
    missing = [f for f in REQUIRED_ADDRESS_FIELDS if not (getattr(address, f) or "").strip()]
    if missing:
        raise ValidationError(f"Shipping address is missing: {', '.join(missing)}", field="shipping_address")
    return address


def _resolve_lines(db: Database, lines: List[OrderLineIn], now: datetime, allow_partial: bool) -> List[OrderLine]:
    resolved = []
    for line in lines:
        product = get_product(db, line.product_id)
        if product is None or not product.is_active:
            if not allow_partial:
                raise NotFoundError("Product", line.product_id)
            logger.info("Dropping unavailable product %s from order", line.product_id)
            continue
        resolved.append(OrderLine(
            product_id=product.id,
            name=product.name,
            quantity=line.quantity,
            price=effective_price(product, now),
            customization=line.customization or Customization(),
        ))
    return resolved


def place_order(db: Database, buyer: Buyer, lines: Iterable[OrderLineIn],
                shipping_address: Optional[ShippingAddress], payment_method: Optional[str] = None,
                currency: str = settings.DEFAULT_CURRENCY, mailer: Optional[Mailer] = None,
                now: Optional[datetime] = None, allow_partial: Optional[bool] = None) -> Tuple[Order, bool]:
    """Price, persist and confirm an order.

    Every line is re-priced from the catalog; client-side prices are never
    trusted. Lines whose product no longer resolves are dropped unless
    ``allow_partial`` is false, in which case they fail the order.

    Returns the stored order and whether the confirmation email went out. A
    mail failure never undoes the order.
    """
    now = now or datetime.now(timezone.utc)
    if allow_partial is None:
        allow_partial = settings.ALLOW_PARTIAL_ORDERS
    lines = list(lines)
    if not lines:
        raise ValidationError("Order must contain at least one item", field="items")
    address = _check_address(shipping_address)

    items = _resolve_lines(db, lines, now, allow_partial)
    if not items:
        raise ValidationError("None of the requested items are available", field="items")

    subtotal = money(sum(item.price * item.quantity for item in items))
    shipping_cost = money(settings.SHIPPING_COST)
    tax = money(subtotal * settings.TAX_RATE)
    order = Order(
        order_number="pending",
        user_id=buyer.user_id,
        guest_email=buyer.guest_email,
        items=items,
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax=tax,
        total=money(subtotal + shipping_cost + tax),
        currency=currency.upper(),
        shipping_address=address,
        payment_method=payment_method,
        status_history=[StatusChange(status="pending", at=now)],
        created_at=now,
    )

    for attempt in range(ORDER_NUMBER_ATTEMPTS):
        order.order_number = generate_order_number(db, now)
        try:
            order.id = create_document(db, "order", order)
            break
        except DuplicateKeyError:
            logger.warning("Order number %s already taken (attempt %d)", order.order_number, attempt + 1)
    else:
        raise DependencyError("database", "could not allocate a unique order number")
    logger.info("Placed order %s: %d line(s), total %.2f %s",
                order.order_number, len(items), order.total, order.currency)

    if buyer.user_id is not None:
        CartStore(db).delete(CartOwner.for_user(buyer.user_id))

    email_sent = False
    if mailer is not None:
        email_sent = send_order_confirmation(mailer, order, buyer.contact_email)
    return order, email_sent


def list_orders(db: Database, user_id: str) -> List[Order]:
    docs = get_documents(db, "order", {"user_id": user_id}, sort=[("created_at", DESCENDING)])
    return [Order.from_doc(doc) for doc in docs]


def get_order(db: Database, order_number: str, user_id: Optional[str] = None,
              guest_email: Optional[str] = None) -> Order:
    query = {"order_number": order_number}
    if user_id is not None:
        query["user_id"] = user_id
    elif guest_email:
        query["guest_email"] = guest_email.strip().lower()
    else:
        raise NotFoundError("Order", order_number)
    doc = db["order"].find_one(query)
    if not doc:
        raise NotFoundError("Order", order_number)
    return Order.from_doc(doc)


def _find_by_number(db: Database, order_number: str) -> dict:
    doc = db["order"].find_one({"order_number": order_number})
    if not doc:
        raise NotFoundError("Order", order_number)
    return doc


def transition_status(db: Database, order_number: str, new_status: OrderStatus,
                      tracking_number: Optional[str] = None, now: Optional[datetime] = None) -> Order:
    now = now or datetime.now(timezone.utc)
    doc = _find_by_number(db, order_number)
    current = doc.get("order_status", "pending")
    if new_status not in ORDER_TRANSITIONS[current]:
        raise ValidationError(f"Cannot move order {order_number} from {current} to {new_status}", field="status")
    updates = {"order_status": new_status, "updated_at": now}
    if tracking_number:
        updates["tracking_number"] = tracking_number
    result = db["order"].update_one(
        {"_id": doc["_id"], "order_status": current},
        {"$set": updates, "$push": {"status_history": {"status": new_status, "at": now}}},
    )
    if result.matched_count == 0:
        raise ValidationError(f"Order {order_number} is no longer {current}; reload and retry", field="status")
    logger.info("Order %s: %s -> %s", order_number, current, new_status)
    return Order.from_doc(_find_by_number(db, order_number))


def update_payment_status(db: Database, order_number: str, status: PaymentStatus,
                          now: Optional[datetime] = None) -> Order:
    doc = _find_by_number(db, order_number)
    db["order"].update_one(
        {"_id": doc["_id"]},
        {"$set": {"payment_status": status, "updated_at": now or datetime.now(timezone.utc)}},
    )
    logger.info("Order %s payment marked %s", order_number, status)
    return Order.from_doc(_find_by_number(db, order_number))


def request_return(db: Database, order_number: str, user_id: str, reason: Optional[str],
                   now: Optional[datetime] = None) -> Order:
    order = get_order(db, order_number, user_id=user_id)
    if order.order_status != "delivered":
        raise ValidationError("Returns can only be requested for delivered orders")
    if order.return_request.requested:
        raise ValidationError("A return was already requested for this order")
    now = now or datetime.now(timezone.utc)
    result = db["order"].update_one(
        {
            "order_number": order_number,
            "user_id": user_id,
            "order_status": "delivered",
            "return_request.requested": False,
        },
        {"$set": {
            "return_request": {"requested": True, "reason": reason, "requested_at": now},
            "updated_at": now,
        }},
    )
    if result.matched_count == 0:
        raise ValidationError("A return was already requested for this order")
    return get_order(db, order_number, user_id=user_id)


def buyer_email(db: Database, order: Order) -> Optional[str]:
    if order.guest_email:
        return order.guest_email
    user = db["user"].find_one({"_id": to_oid(order.user_id)}, {"email": 1})
    return user.get("email") if user else None
