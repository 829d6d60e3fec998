"""Authentication, user profile, saved addresses and favorites."""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database

import settings
from catalog import get_product, product_out
from database import create_document, get_db, to_oid
from errors import AuthError, ForbiddenError, NotFoundError, ValidationError
from notifications import Mailer, reset_code as reset_code_template, send_quietly
from pricing import as_utc
from schemas import Address, ShippingAddress, User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class AddressIn(ShippingAddress):
    is_default: Optional[bool] = None


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def user_out(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user["name"],
        "email": user["email"],
        "phone": user.get("phone"),
        "currency": user.get("currency", "USD"),
        "role": user.get("role", "customer"),
    }


def _user_from_token(db: Database, token: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    oid = to_oid(payload.get("sub"))
    if oid is None:
        return None
    return db["user"].find_one({"_id": oid})


def get_current_user(request: Request, token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)):
    token = token or request.cookies.get("token")
    if not token:
        raise AuthError("Authentication required")
    user = _user_from_token(db, token)
    if not user:
        raise AuthError("Invalid or expired token")
    return user


def get_optional_user(request: Request, token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)):
    token = token or request.cookies.get("token")
    if not token:
        return None
    return _user_from_token(db, token)


def require_admin(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        raise ForbiddenError("Admins only")
    return user


def register(db: Database, payload: UserCreate) -> dict:
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise ValidationError("Email already registered", field="email")
    user = User(name=payload.name.strip(), email=email, password_hash=get_password_hash(payload.password))
    uid = create_document(db, "user", user)
    logger.info("Registered user %s", uid)
    return db["user"].find_one({"_id": to_oid(uid)})


def authenticate(db: Database, email: str, password: str) -> dict:
    user = db["user"].find_one({"email": email.strip().lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise AuthError("Invalid credentials")
    return user


def request_password_reset(db: Database, mailer: Mailer, email: str, now: Optional[datetime] = None) -> None:
    """Issue a 6-digit reset code. Unknown emails are ignored silently."""
    user = db["user"].find_one({"email": email.strip().lower()})
    if not user:
        return
    now = now or datetime.now(timezone.utc)
    code = f"{secrets.randbelow(900000) + 100000}"
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "reset_code": code,
            "reset_code_expires_at": now + timedelta(minutes=settings.RESET_CODE_TTL_MINUTES),
        }},
    )
    send_quietly(mailer, user["email"], "Your Verity Gem password reset code",
                 reset_code_template(code, settings.RESET_CODE_TTL_MINUTES))


def reset_password(db: Database, email: str, code: str, new_password: str, now: Optional[datetime] = None) -> None:
    now = now or datetime.now(timezone.utc)
    user = db["user"].find_one({"email": email.strip().lower()})
    expires_at = user.get("reset_code_expires_at") if user else None
    if not user or not user.get("reset_code") or expires_at is None:
        raise ValidationError("Invalid or expired reset code")
    if not secrets.compare_digest(user["reset_code"], code) or as_utc(expires_at) < now:
        raise ValidationError("Invalid or expired reset code")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "password_hash": get_password_hash(new_password),
            "reset_code": None,
            "reset_code_expires_at": None,
            "updated_at": now,
        }},
    )
    logger.info("Password reset for user %s", user["_id"])


def update_profile(db: Database, user: dict, payload: ProfileUpdate) -> dict:
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if "currency" in changes:
        changes["currency"] = changes["currency"].upper()
    if changes:
        changes["updated_at"] = datetime.now(timezone.utc)
        db["user"].update_one({"_id": user["_id"]}, {"$set": changes})
    return db["user"].find_one({"_id": user["_id"]})


def _save_addresses(db: Database, user: dict, addresses: List[Address]) -> List[dict]:
    docs = [a.model_dump() for a in addresses]
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"shipping_addresses": docs}})
    return docs


def _load_addresses(user: dict) -> List[Address]:
    return [Address.model_validate(a) for a in user.get("shipping_addresses", [])]


def add_address(db: Database, user: dict, payload: AddressIn) -> List[dict]:
    addresses = _load_addresses(user)
    address = Address(**payload.model_dump(exclude_none=True))
    if address.is_default:
        for other in addresses:
            other.is_default = False
    addresses.append(address)
    return _save_addresses(db, user, addresses)


def update_address(db: Database, user: dict, address_id: str, payload: AddressIn) -> List[dict]:
    addresses = _load_addresses(user)
    target = next((a for a in addresses if a.id == address_id), None)
    if target is None:
        raise NotFoundError("Address", address_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(target, field, value if field != "is_default" else bool(value))
    if target.is_default:
        for other in addresses:
            if other.id != address_id:
                other.is_default = False
    return _save_addresses(db, user, addresses)


def delete_address(db: Database, user: dict, address_id: str) -> List[dict]:
    addresses = [a for a in _load_addresses(user) if a.id != address_id]
    return _save_addresses(db, user, addresses)


def list_favorites(db: Database, user: dict) -> List[dict]:
    favorites = []
    for product_id in user.get("favorites", []):
        product = get_product(db, product_id)
        if product is not None and product.is_active:
            favorites.append(product_out(product))
    return favorites


def add_favorite(db: Database, user: dict, product_id: str) -> List[str]:
    if product_id in user.get("favorites", []):
        raise ValidationError("Already in favorites")
    if get_product(db, product_id) is None:
        raise NotFoundError("Product", product_id)
    db["user"].update_one({"_id": user["_id"]}, {"$push": {"favorites": product_id}})
    return user.get("favorites", []) + [product_id]


def remove_favorite(db: Database, user: dict, product_id: str) -> List[str]:
    db["user"].update_one({"_id": user["_id"]}, {"$pull": {"favorites": product_id}})
    return [f for f in user.get("favorites", []) if f != product_id]
