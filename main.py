import logging
from datetime import datetime, timezone
from typing import Annotated, List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError

import accounts
import cart as carts
import catalog
import giftcards
import notifications
import orders
import settings
from accounts import get_current_user, get_optional_user, require_admin, user_out
from cart import CartStore, GuestLine
from catalog import ProductQuery
from currency import RateClient, get_rate_client
from database import get_db, get_documents
from errors import AuthError, DependencyError, ForbiddenError, NotFoundError, ShopError, ValidationError
from notifications import Mailer, get_mailer, send_order_confirmation, send_quietly
from orders import Buyer, OrderLineIn
from schemas import (
    CartOwner,
    Customization,
    OrderStatus,
    PaymentMethodConfig,
    PaymentStatus,
    ProductIn,
    ShippingAddress,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("veritygem")

app = FastAPI(title="Verity Gem API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.CLIENT_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handling

ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    AuthError: 401,
    ForbiddenError: 403,
    NotFoundError: 404,
    DependencyError: 503,
}


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
        headers=headers,
    )


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    return await shop_error_handler(request, DependencyError("database", str(exc)[:200]))


# Request models

class CartItemIn(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    customization: Optional[Customization] = None
    session_id: Optional[str] = None


class CartQuantityIn(BaseModel):
    quantity: int


class CartSyncIn(BaseModel):
    guest_cart: List[GuestLine] = Field(default_factory=list)
    session_id: Optional[str] = None


class CheckoutIn(BaseModel):
    items: List[OrderLineIn]
    shipping_address: Optional[ShippingAddress] = None
    payment_method: Optional[str] = None
    currency: str = Field(settings.DEFAULT_CURRENCY, min_length=3, max_length=3)
    guest_email: Optional[EmailStr] = None


class ReturnIn(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class StatusIn(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None


class PaymentStatusIn(BaseModel):
    payment_status: PaymentStatus


class ForgotPasswordIn(BaseModel):
    email: EmailStr


class ResetPasswordIn(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=6, max_length=6)
    new_password: str = Field(..., min_length=6)


class ConvertIn(BaseModel):
    amount: float
    from_currency: str = Field(..., min_length=3, max_length=3)
    to_currency: str = Field(..., min_length=3, max_length=3)


SIZE_GUIDES = {
    "rings": {
        "us": [
            {"size": "4", "diameter": "14.9mm", "circumference": "46.8mm"},
            {"size": "5", "diameter": "15.7mm", "circumference": "49.3mm"},
            {"size": "6", "diameter": "16.5mm", "circumference": "51.9mm"},
            {"size": "7", "diameter": "17.3mm", "circumference": "54.4mm"},
            {"size": "8", "diameter": "18.2mm", "circumference": "57.0mm"},
            {"size": "9", "diameter": "19.0mm", "circumference": "59.5mm"},
            {"size": "10", "diameter": "19.8mm", "circumference": "62.1mm"},
        ],
    },
    "necklaces": {
        "lengths": [
            {"name": "Choker", "length": "14-16 inches", "description": "Sits high on neck"},
            {"name": "Princess", "length": "17-19 inches", "description": "Classic length, sits above collarbone"},
            {"name": "Matinee", "length": "20-24 inches", "description": "Falls to top of bust"},
            {"name": "Opera", "length": "28-36 inches", "description": "Falls to mid-bust"},
            {"name": "Rope", "length": "37+ inches", "description": "Very long, can be doubled"},
        ],
    },
    "bracelets": {
        "sizes": [
            {"size": "Extra Small", "wrist": "5.5-6 inches"},
            {"size": "Small", "wrist": "6-6.5 inches"},
            {"size": "Medium", "wrist": "6.5-7 inches"},
            {"size": "Large", "wrist": "7-7.5 inches"},
            {"size": "Extra Large", "wrist": "7.5-8 inches"},
        ],
    },
}


def cart_owner(user: Optional[dict], session_id: Optional[str]) -> CartOwner:
    """Signed-in callers use their user cart; anonymous callers their session cart."""
    if user is not None:
        return CartOwner.for_user(str(user["_id"]))
    if session_id:
        return CartOwner.for_session(session_id)
    raise ValidationError("session_id is required for guest carts", field="session_id")


def set_token_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        "token",
        token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


# Routes
@app.get("/")
def root():
    return {"message": "Verity Gem API is running"}


@app.get("/health")
def health(db: Database = Depends(get_db)):
    response = {
        "status": "ok",
        "service": "Verity Gem API",
        "database": "Connected",
        "timestamp": datetime.now(timezone.utc),
    }
    try:
        db.command("ping")
    except PyMongoError as e:
        logger.warning("Health check could not reach the database: %s", e)
        response["status"] = "degraded"
        response["database"] = f"Error: {str(e)[:50]}"
    return response


# Auth endpoints
@app.post("/auth/register")
def register(payload: accounts.UserCreate, response: Response, db: Database = Depends(get_db),
             mailer: Mailer = Depends(get_mailer)):
    user = accounts.register(db, payload)
    token = accounts.create_access_token({"sub": str(user["_id"])})
    set_token_cookie(response, token)
    send_quietly(mailer, user["email"], "Welcome to Verity Gem", notifications.welcome(user["name"]))
    return {"user": user_out(user), "access_token": token, "token_type": "bearer"}


@app.post("/auth/login")
def login(response: Response, form_data: OAuth2PasswordRequestForm = Depends(), db: Database = Depends(get_db)):
    user = accounts.authenticate(db, form_data.username, form_data.password)
    token = accounts.create_access_token({"sub": str(user["_id"])})
    set_token_cookie(response, token)
    return {"access_token": token, "token_type": "bearer", "user": user_out(user)}


@app.get("/auth/me")
def me(user=Depends(get_current_user)):
    return {"user": user_out(user)}


@app.post("/auth/logout")
def logout(response: Response):
    response.delete_cookie("token")
    return {"message": "Logged out successfully"}


@app.post("/auth/forgot-password")
def forgot_password(payload: ForgotPasswordIn, db: Database = Depends(get_db), mailer: Mailer = Depends(get_mailer)):
    accounts.request_password_reset(db, mailer, payload.email)
    return {"message": "If that email is registered, a reset code has been sent."}


@app.post("/auth/reset-password")
def reset_password(payload: ResetPasswordIn, db: Database = Depends(get_db)):
    accounts.reset_password(db, payload.email, payload.code, payload.new_password)
    return {"message": "Password has been reset successfully."}


# Product endpoints
@app.get("/products")
def list_products(query: Annotated[ProductQuery, Query()], db: Database = Depends(get_db)):
    return catalog.list_products(db, query)


@app.get("/products/featured")
def featured_products(db: Database = Depends(get_db)):
    return {"products": catalog.featured_products(db)}


@app.get("/products/filters")
def product_filters(db: Database = Depends(get_db)):
    return catalog.filter_options(db)


@app.get("/products/{slug}")
def get_product(slug: str, db: Database = Depends(get_db)):
    return {"product": catalog.product_out(catalog.get_by_slug(db, slug))}


@app.post("/products", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_admin)])
def create_product(payload: ProductIn, db: Database = Depends(get_db)):
    return {"product": catalog.product_out(catalog.create_product(db, payload))}


# Cart endpoints (user or guest session)
@app.get("/cart")
def get_cart(session_id: Optional[str] = None, user=Depends(get_optional_user), db: Database = Depends(get_db)):
    owner = cart_owner(user, session_id)
    return {"cart": carts.cart_view(db, carts.get_cart(CartStore(db), owner))}


@app.post("/cart")
def add_to_cart(payload: CartItemIn, user=Depends(get_optional_user), db: Database = Depends(get_db)):
    owner = cart_owner(user, payload.session_id)
    product = catalog.require_active_product(db, payload.product_id)
    updated = carts.add_item(CartStore(db), owner, product, payload.quantity, payload.customization)
    return {"cart": carts.cart_view(db, updated)}


@app.put("/cart/{line_id}")
def update_cart_line(line_id: str, payload: CartQuantityIn, session_id: Optional[str] = None,
                     user=Depends(get_optional_user), db: Database = Depends(get_db)):
    owner = cart_owner(user, session_id)
    updated = carts.update_quantity(CartStore(db), owner, line_id, payload.quantity)
    return {"cart": carts.cart_view(db, updated)}


@app.delete("/cart/{line_id}")
def remove_cart_line(line_id: str, session_id: Optional[str] = None, user=Depends(get_optional_user),
                     db: Database = Depends(get_db)):
    owner = cart_owner(user, session_id)
    return {"cart": carts.cart_view(db, carts.remove_item(CartStore(db), owner, line_id))}


@app.delete("/cart")
def clear_cart(session_id: Optional[str] = None, user=Depends(get_optional_user), db: Database = Depends(get_db)):
    owner = cart_owner(user, session_id)
    return {"cart": carts.cart_view(db, carts.clear(CartStore(db), owner))}


@app.post("/cart/sync")
def sync_cart(payload: CartSyncIn, user=Depends(get_current_user), db: Database = Depends(get_db)):
    session = CartOwner.for_session(payload.session_id) if payload.session_id else None
    merged = carts.merge_guest_cart(CartStore(db), CartOwner.for_user(str(user["_id"])), payload.guest_cart, session)
    return {"cart": carts.cart_view(db, merged)}


# Checkout / Orders
@app.post("/orders", status_code=status.HTTP_201_CREATED)
def place_order(payload: CheckoutIn, user=Depends(get_optional_user), db: Database = Depends(get_db),
                mailer: Mailer = Depends(get_mailer)):
    if user is not None:
        buyer = Buyer.for_user(str(user["_id"]), user.get("email"))
    elif payload.guest_email:
        buyer = Buyer.for_guest(payload.guest_email)
    else:
        raise ValidationError("Email required for guest checkout", field="guest_email")
    order, email_sent = orders.place_order(
        db,
        buyer,
        payload.items,
        payload.shipping_address,
        payment_method=payload.payment_method,
        currency=payload.currency,
        mailer=mailer,
    )
    message = "Order placed successfully"
    if not email_sent:
        message += ", but the confirmation email could not be sent"
    return {"order": order, "message": message, "email_sent": email_sent}


@app.get("/orders")
def list_orders(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"orders": orders.list_orders(db, str(user["_id"]))}


def _visible_order(db: Database, order_number: str, user: Optional[dict], email: Optional[str]):
    if user is not None:
        return orders.get_order(db, order_number, user_id=str(user["_id"]))
    return orders.get_order(db, order_number, guest_email=email)


@app.get("/orders/{order_number}")
def get_order(order_number: str, email: Optional[str] = None, user=Depends(get_optional_user),
              db: Database = Depends(get_db)):
    return {"order": _visible_order(db, order_number, user, email)}


@app.post("/orders/{order_number}/resend-confirmation")
def resend_confirmation(order_number: str, email: Optional[str] = None, user=Depends(get_optional_user),
                        db: Database = Depends(get_db), mailer: Mailer = Depends(get_mailer)):
    order = _visible_order(db, order_number, user, email)
    to = user.get("email") if user is not None else order.guest_email
    return {"email_sent": send_order_confirmation(mailer, order, to)}


@app.post("/orders/{order_number}/return")
def request_return(order_number: str, payload: ReturnIn, user=Depends(get_current_user),
                   db: Database = Depends(get_db), mailer: Mailer = Depends(get_mailer)):
    order = orders.request_return(db, order_number, str(user["_id"]), payload.reason)
    send_quietly(mailer, settings.ADMIN_EMAIL, f"Return Request - {order.order_number}",
                 notifications.return_request(order))
    return {"message": "Return request submitted", "order": order}


# Admin order management
@app.put("/admin/orders/{order_number}/status", dependencies=[Depends(require_admin)])
def update_order_status(order_number: str, payload: StatusIn, db: Database = Depends(get_db),
                        mailer: Mailer = Depends(get_mailer)):
    order = orders.transition_status(db, order_number, payload.status, payload.tracking_number)
    if order.order_status == "shipped" and order.tracking_number:
        send_quietly(mailer, orders.buyer_email(db, order), f"Your order {order.order_number} has shipped",
                     notifications.shipping_update(order))
    return {"order": order}


@app.put("/admin/orders/{order_number}/payment", dependencies=[Depends(require_admin)])
def update_payment_status(order_number: str, payload: PaymentStatusIn, db: Database = Depends(get_db)):
    return {"order": orders.update_payment_status(db, order_number, payload.payment_status)}


# Profile, addresses, favorites
@app.get("/user/profile")
def get_profile(user=Depends(get_current_user)):
    profile = user_out(user)
    profile["shipping_addresses"] = user.get("shipping_addresses", [])
    return {"user": profile}


@app.put("/user/profile")
def update_profile(payload: accounts.ProfileUpdate, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"user": user_out(accounts.update_profile(db, user, payload))}


@app.post("/user/addresses")
def add_address(payload: accounts.AddressIn, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"addresses": accounts.add_address(db, user, payload)}


@app.put("/user/addresses/{address_id}")
def update_address(address_id: str, payload: accounts.AddressIn, user=Depends(get_current_user),
                   db: Database = Depends(get_db)):
    return {"addresses": accounts.update_address(db, user, address_id, payload)}


@app.delete("/user/addresses/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"addresses": accounts.delete_address(db, user, address_id)}


@app.get("/favorites")
def list_favorites(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"favorites": accounts.list_favorites(db, user)}


@app.post("/favorites/{product_id}")
def add_favorite(product_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"message": "Added to favorites", "favorites": accounts.add_favorite(db, user, product_id)}


@app.delete("/favorites/{product_id}")
def remove_favorite(product_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"message": "Removed from favorites", "favorites": accounts.remove_favorite(db, user, product_id)}


# Currency
@app.get("/currency/rates")
def currency_rates(base: str = "USD", rates: RateClient = Depends(get_rate_client)):
    return {"rates": rates.rates(base), "base": base.upper()}


@app.post("/currency/convert")
def currency_convert(payload: ConvertIn, rates: RateClient = Depends(get_rate_client)):
    converted = rates.convert(payload.amount, payload.from_currency, payload.to_currency)
    return {
        "original": payload.amount,
        "converted": converted,
        "from": payload.from_currency.upper(),
        "to": payload.to_currency.upper(),
    }


# Gift cards
@app.post("/gift-cards", status_code=status.HTTP_201_CREATED)
def create_gift_card(payload: giftcards.GiftCardIn, db: Database = Depends(get_db),
                     mailer: Mailer = Depends(get_mailer)):
    card, email_sent = giftcards.issue_gift_card(db, payload, mailer)
    return {
        "gift_card": {"code": card.code, "amount": card.amount, "currency": card.currency,
                      "expires_at": card.expires_at},
        "email_sent": email_sent,
    }


@app.get("/gift-cards/{code}")
def gift_card_balance(code: str, db: Database = Depends(get_db)):
    card = giftcards.get_active_gift_card(db, code)
    return {"balance": card.balance, "currency": card.currency, "expires_at": card.expires_at}


# Storefront info
@app.get("/size-guides")
def size_guides():
    return SIZE_GUIDES


@app.get("/payment-methods")
def payment_methods(db: Database = Depends(get_db)):
    docs = get_documents(db, "paymentmethod", {"is_active": True})
    return {"methods": [PaymentMethodConfig.from_doc(doc) for doc in docs]}


@app.get("/shipping-info")
def shipping_info():
    return {
        "international": {
            "cost": settings.SHIPPING_COST,
            "currency": settings.DEFAULT_CURRENCY,
            "estimated_days": "5-7 business days",
            "tracking": True,
            "insurance": True,
        },
        "policies": {
            "returns": "30-day return policy",
            "warranty": "Lifetime warranty on craftsmanship",
            "packaging": "Luxury gift packaging included",
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
