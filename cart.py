"""Cart aggregate and guest-to-user merge.

Carts live one document per owner in the "cart" collection. Every operation
receives a CartStore and the CartOwner that the request resolved to, so the
same code serves anonymous sessions and signed-in users.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field
from pymongo.database import Database

from catalog import get_product, product_out
from errors import NotFoundError, ValidationError
from pricing import effective_price, money
from schemas import Cart, CartLine, CartOwner, Customization, Product

logger = logging.getLogger(__name__)


class GuestLine(BaseModel):
    """A line held by an anonymous client, as sent at login time."""
    product_id: str
    quantity: int = Field(..., ge=1)
    customization: Optional[Customization] = None
    price: float = Field(0, ge=0, description="Price captured when the guest added the item")


class CartStore:
    """Cart documents keyed by owner."""

    collection = "cart"

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _key(owner: CartOwner) -> dict:
        return {"owner_key": f"{owner.kind}:{owner.id}"}

    def load(self, owner: CartOwner) -> Optional[Cart]:
        doc = self.db[self.collection].find_one(self._key(owner))
        if not doc:
            return None
        doc.pop("_id", None)
        return Cart.model_validate(doc)

    def load_or_new(self, owner: CartOwner) -> Cart:
        return self.load(owner) or Cart(owner=owner)

    def save(self, cart: Cart) -> Cart:
        cart.updated_at = datetime.now(timezone.utc)
        self.db[self.collection].update_one(self._key(cart.owner), {"$set": cart.model_dump()}, upsert=True)
        return cart

    def delete(self, owner: CartOwner) -> None:
        self.db[self.collection].delete_one(self._key(owner))


def get_cart(store: CartStore, owner: CartOwner) -> Cart:
    return store.load_or_new(owner)


def add_item(store: CartStore, owner: CartOwner, product: Product, quantity: int = 1,
             customization: Optional[Customization] = None, now: Optional[datetime] = None) -> Cart:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", field="quantity")
    if not product.is_active:
        raise NotFoundError("Product", product.id)
    customization = customization or Customization()
    cart = store.load_or_new(owner)
    line = cart.find_slot(product.id, customization)
    if line is not None:
        line.quantity += quantity
    else:
        cart.items.append(CartLine(
            product_id=product.id,
            quantity=quantity,
            customization=customization,
            price_at_add=effective_price(product, now),
        ))
    return store.save(cart)


def update_quantity(store: CartStore, owner: CartOwner, line_id: str, quantity: int) -> Cart:
    cart = store.load(owner)
    line = cart.find_line(line_id) if cart else None
    if line is None:
        raise NotFoundError("Cart item", line_id)
    if quantity <= 0:
        cart.items.remove(line)
    else:
        line.quantity = quantity
    return store.save(cart)


def remove_item(store: CartStore, owner: CartOwner, line_id: str) -> Cart:
    cart = store.load(owner)
    if cart is None:
        return Cart(owner=owner)
    remaining = [line for line in cart.items if line.id != line_id]
    if len(remaining) == len(cart.items):
        return cart
    cart.items = remaining
    return store.save(cart)


def clear(store: CartStore, owner: CartOwner) -> Cart:
    cart = store.load(owner)
    if cart is None:
        return Cart(owner=owner)
    cart.items = []
    return store.save(cart)


def _as_guest_lines(cart: Cart) -> List[GuestLine]:
    return [
        GuestLine(
            product_id=line.product_id,
            quantity=line.quantity,
            customization=line.customization,
            price=line.price_at_add,
        )
        for line in cart.items
    ]


def merge_guest_cart(store: CartStore, owner: CartOwner, guest_lines: Iterable[GuestLine],
                     session: Optional[CartOwner] = None) -> Cart:
    """Fold an anonymous cart into the user's cart.

    Lines come from the client payload and, when ``session`` is given, from
    the server-side session cart, which is deleted afterwards. Running the
    merge again with nothing left to merge leaves the user cart untouched.
    """
    if not owner.is_user:
        raise ValidationError("Guest carts can only be merged into a user cart")
    lines = list(guest_lines)
    session_cart = store.load(session) if session is not None else None
    if session_cart is not None:
        lines.extend(_as_guest_lines(session_cart))
    if not lines:
        return store.load_or_new(owner)

    cart = store.load_or_new(owner)
    merged = 0
    for guest in lines:
        product = get_product(store.db, guest.product_id)
        if product is None or not product.is_active:
            logger.info("Skipping guest line for unavailable product %s", guest.product_id)
            continue
        customization = guest.customization or Customization()
        line = cart.find_slot(guest.product_id, customization)
        if line is not None:
            line.quantity += guest.quantity
        else:
            cart.items.append(CartLine(
                product_id=guest.product_id,
                quantity=guest.quantity,
                customization=customization,
                price_at_add=guest.price,
            ))
        merged += 1
    store.save(cart)
    if session_cart is not None:
        store.delete(session)
    logger.info("Merged %d guest line(s) into cart of user %s", merged, owner.id)
    return cart


def cart_view(db: Database, cart: Cart, now: Optional[datetime] = None) -> dict:
    """Cart with populated product references and running totals."""
    items = []
    subtotal = 0.0
    for line in cart.items:
        product = get_product(db, line.product_id)
        line_total = money(line.price_at_add * line.quantity)
        subtotal += line_total
        data = line.model_dump()
        data["product"] = product_out(product, now) if product else None
        data["line_total"] = line_total
        items.append(data)
    return {
        "owner": cart.owner.model_dump(),
        "items": items,
        "item_count": sum(line.quantity for line in cart.items),
        "subtotal": money(subtotal),
        "updated_at": cart.updated_at,
    }
