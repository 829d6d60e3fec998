"""
Database Schemas for Verity Gem

Each top-level Pydantic model corresponds to a MongoDB collection. Collection
name is the lowercase class name (Product -> "product", Order -> "order").
The remaining models are embedded value types.
"""
from datetime import datetime
from typing import Any, List, Literal, Optional

from bson import ObjectId
from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

Category = Literal["ring", "necklace", "earring", "bracelet", "anklet", "pendant", "set", "other"]
MetalType = Literal["gold", "silver", "platinum", "stainless steel", "other"]
Gender = Literal["mens", "womens", "unisex"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]


def new_line_id() -> str:
    return str(ObjectId())


class Image(BaseModel):
    url: str = Field(..., min_length=1)
    alt: Optional[str] = None
    is_primary: bool = False


class Discount(BaseModel):
    is_active: bool = False
    type: Literal["percentage", "flat"] = "percentage"
    value: Optional[float] = Field(None, ge=0, description="10 = 10% off, or 10 currency units off")
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None


class Engraving(BaseModel):
    available: bool = False
    max_length: int = Field(20, ge=0)
    price: float = Field(0, ge=0)


class ProductIn(BaseModel):
    """Admin payload for creating a product"""
    name: str = Field(..., min_length=1)
    slug: Optional[str] = None
    sku: Optional[str] = None
    description: Optional[str] = None
    category: Optional[Category] = None
    subcategory: Optional[str] = None
    metal_type: Optional[MetalType] = None
    karat: Optional[int] = Field(None, ge=1, le=24)
    metal_color: Optional[str] = None
    stone_type: Optional[str] = None
    stone_color: Optional[str] = None
    gender: Gender = "unisex"
    occasions: List[str] = Field(default_factory=list)
    style_tags: List[str] = Field(default_factory=list)
    images: List[Image] = Field(..., min_length=1, description="At least one product image is required")
    price: float = Field(..., ge=0)
    currency: str = "USD"
    discount: Optional[Discount] = None
    rating: float = Field(0, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    stock: int = Field(0, ge=0)
    is_active: bool = True
    is_featured: bool = False
    engraving: Engraving = Field(default_factory=Engraving)


class Product(ProductIn):
    """
    Products collection schema
    Collection: "product"
    """
    id: Optional[str] = None
    images: List[Image] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @field_validator("discount", mode="wrap")
    @classmethod
    def _drop_malformed_discount(cls, value: Any, handler):
        # A stored discount that no longer validates prices at base price
        try:
            return handler(value)
        except PydanticValidationError:
            return None

    @classmethod
    def from_doc(cls, doc: dict) -> "Product":
        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)


class Customization(BaseModel):
    """Buyer-supplied per-line modifications.

    Two customizations are equal when their normalized fields are equal, so an
    absent customization and an empty one occupy the same cart slot.
    """
    model_config = ConfigDict(frozen=True)

    engraving: Optional[str] = Field(None, max_length=100)
    metal_type: Optional[str] = None
    stone_type: Optional[str] = None

    @field_validator("engraving", "metal_type", "stone_type", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    def slot_key(self) -> tuple:
        return (self.engraving, self.metal_type, self.stone_type)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Customization):
            return NotImplemented
        return self.slot_key() == other.slot_key()

    def __hash__(self) -> int:
        return hash(self.slot_key())


class CartOwner(BaseModel):
    """Exactly one of an authenticated user or an anonymous session."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["user", "session"]
    id: str = Field(..., min_length=1)

    @classmethod
    def for_user(cls, user_id: str) -> "CartOwner":
        return cls(kind="user", id=user_id)

    @classmethod
    def for_session(cls, session_id: str) -> "CartOwner":
        return cls(kind="session", id=session_id)

    @property
    def is_user(self) -> bool:
        return self.kind == "user"


class CartLine(BaseModel):
    id: str = Field(default_factory=new_line_id)
    product_id: str
    quantity: int = Field(..., ge=1)
    customization: Customization = Field(default_factory=Customization)
    price_at_add: float = Field(0, ge=0)

    @field_validator("customization", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any):
        return Customization() if value is None else value

    def same_slot(self, product_id: str, customization: Customization) -> bool:
        return self.product_id == product_id and self.customization == customization


class Cart(BaseModel):
    """
    Carts collection schema, one document per owner
    Collection: "cart"
    """
    owner: CartOwner
    items: List[CartLine] = Field(default_factory=list)
    updated_at: Optional[datetime] = None

    def find_slot(self, product_id: str, customization: Customization) -> Optional[CartLine]:
        for line in self.items:
            if line.same_slot(product_id, customization):
                return line
        return None

    def find_line(self, line_id: str) -> Optional[CartLine]:
        for line in self.items:
            if line.id == line_id:
                return line
        return None


class ShippingAddress(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None


class Address(ShippingAddress):
    id: str = Field(default_factory=new_line_id)
    is_default: bool = False


class OrderLine(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    customization: Customization = Field(default_factory=Customization)


class ReturnRequest(BaseModel):
    requested: bool = False
    reason: Optional[str] = None
    requested_at: Optional[datetime] = None


class StatusChange(BaseModel):
    status: OrderStatus
    at: datetime


class Order(BaseModel):
    """
    Orders collection schema
    Collection: "order"
    """
    id: Optional[str] = None
    order_number: str
    user_id: Optional[str] = None
    guest_email: Optional[EmailStr] = None
    items: List[OrderLine]
    subtotal: float = Field(..., ge=0)
    shipping_cost: float = Field(..., ge=0)
    tax: float = Field(..., ge=0)
    total: float = Field(..., ge=0)
    currency: str = "USD"
    shipping_address: ShippingAddress
    payment_method: Optional[str] = None
    payment_status: PaymentStatus = "pending"
    order_status: OrderStatus = "pending"
    tracking_number: Optional[str] = None
    return_request: ReturnRequest = Field(default_factory=ReturnRequest)
    status_history: List[StatusChange] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _one_buyer(self):
        if (self.user_id is None) == (self.guest_email is None):
            raise ValueError("An order belongs to exactly one of user_id or guest_email")
        return self

    @classmethod
    def from_doc(cls, doc: dict) -> "Order":
        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)


class User(BaseModel):
    """
    Users collection schema
    Collection: "user"
    """
    name: str = Field(..., min_length=1)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of the password")
    phone: Optional[str] = None
    role: Literal["customer", "admin"] = "customer"
    shipping_addresses: List[Address] = Field(default_factory=list)
    favorites: List[str] = Field(default_factory=list)
    currency: str = "USD"
    reset_code: Optional[str] = None
    reset_code_expires_at: Optional[datetime] = None


class PaymentMethodConfig(BaseModel):
    """
    Manual payment instructions shown at checkout
    Collection: "paymentmethod"
    """
    id: Optional[str] = None
    method: str
    display_name: Optional[str] = None
    instructions: Optional[str] = None
    account_details: Optional[dict] = None
    is_active: bool = True

    @classmethod
    def from_doc(cls, doc: dict) -> "PaymentMethodConfig":
        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)


class Party(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None


class GiftCard(BaseModel):
    """
    Gift cards collection schema
    Collection: "giftcard"
    """
    id: Optional[str] = None
    code: str
    amount: float = Field(..., gt=0)
    currency: str = "USD"
    balance: float = Field(..., ge=0)
    purchaser: Party = Field(default_factory=Party)
    recipient: Party
    message: Optional[str] = Field(None, max_length=500)
    images: Optional[dict] = None
    is_active: bool = True
    expires_at: datetime
    created_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: dict) -> "GiftCard":
        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)
