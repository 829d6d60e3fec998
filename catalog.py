"""Catalog lookup: product resolution, listing and filter facets."""
import logging
import math
import re
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from slugify import slugify

from database import create_document, to_oid
from errors import NotFoundError, ValidationError
from pricing import effective_price
from schemas import Product, ProductIn

logger = logging.getLogger(__name__)

SORT_OPTIONS = {
    "price-asc": [("price", ASCENDING)],
    "price-desc": [("price", DESCENDING)],
    "rating": [("rating", DESCENDING)],
    "newest": [("created_at", DESCENDING)],
}

FACET_FIELDS = {
    "categories": "category",
    "metal_types": "metal_type",
    "metal_colors": "metal_color",
    "stone_types": "stone_type",
}


class ProductQuery(BaseModel):
    category: Optional[str] = None
    subcategory: Optional[str] = None
    metal_type: Optional[str] = None
    karat: Optional[int] = None
    metal_color: Optional[str] = None
    stone_type: Optional[str] = None
    gender: Optional[str] = None
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    search: Optional[str] = None
    featured: bool = False
    sort: Literal["price-asc", "price-desc", "rating", "newest"] = "newest"
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)

    def to_filter(self) -> dict:
        filter_q: dict = {"is_active": True}
        for field in ("category", "subcategory", "metal_type", "karat", "metal_color", "stone_type", "gender"):
            value = getattr(self, field)
            if value is not None:
                filter_q[field] = value
        if self.featured:
            filter_q["is_featured"] = True
        if self.min_price is not None or self.max_price is not None:
            filter_q["price"] = {}
            if self.min_price is not None:
                filter_q["price"]["$gte"] = self.min_price
            if self.max_price is not None:
                filter_q["price"]["$lte"] = self.max_price
        if self.search:
            pattern = re.escape(self.search.strip())
            filter_q["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
            ]
        return filter_q


def product_out(product: Product, now: Optional[datetime] = None) -> dict:
    data = product.model_dump()
    data["final_price"] = effective_price(product, now)
    return data


def get_product(db: Database, product_id: str) -> Optional[Product]:
    oid = to_oid(product_id)
    if oid is None:
        return None
    doc = db["product"].find_one({"_id": oid})
    return Product.from_doc(doc) if doc else None


def require_active_product(db: Database, product_id: str) -> Product:
    product = get_product(db, product_id)
    if product is None or not product.is_active:
        raise NotFoundError("Product", product_id)
    return product


def get_by_slug(db: Database, slug: str) -> Product:
    doc = db["product"].find_one({"slug": slug, "is_active": True})
    if not doc:
        raise NotFoundError("Product", slug)
    return Product.from_doc(doc)


def list_products(db: Database, query: ProductQuery, now: Optional[datetime] = None) -> dict:
    filter_q = query.to_filter()
    skip = (query.page - 1) * query.limit
    cursor = db["product"].find(filter_q).sort(SORT_OPTIONS[query.sort]).skip(skip).limit(query.limit)
    products = [product_out(Product.from_doc(doc), now) for doc in cursor]
    total = db["product"].count_documents(filter_q)
    return {
        "products": products,
        "pagination": {
            "current_page": query.page,
            "total_pages": math.ceil(total / query.limit),
            "total_products": total,
            "has_more": skip + len(products) < total,
        },
    }


def featured_products(db: Database, limit: int = 8, now: Optional[datetime] = None) -> list:
    cursor = db["product"].find({"is_featured": True, "is_active": True}).sort("created_at", DESCENDING).limit(limit)
    return [product_out(Product.from_doc(doc), now) for doc in cursor]


def filter_options(db: Database) -> dict:
    active = {"is_active": True}
    options = {}
    for key, field in FACET_FIELDS.items():
        options[key] = sorted(v for v in db["product"].distinct(field, active) if v)
    options["karats"] = sorted(k for k in db["product"].distinct("karat", active) if k)
    price_range = list(db["product"].aggregate([
        {"$match": active},
        {"$group": {"_id": None, "min_price": {"$min": "$price"}, "max_price": {"$max": "$price"}}},
    ]))
    # An empty match may still yield one group with null bounds
    if price_range and price_range[0]["min_price"] is not None:
        options["price_range"] = {
            "min_price": price_range[0]["min_price"],
            "max_price": price_range[0]["max_price"],
        }
    else:
        options["price_range"] = {"min_price": 0, "max_price": 10000}
    return options


def create_product(db: Database, payload: ProductIn) -> Product:
    data = payload.model_dump()
    data["slug"] = payload.slug or slugify(payload.name)
    if not data["slug"]:
        raise ValidationError("Product name must contain at least one letter or digit", field="name")
    if db["product"].find_one({"slug": data["slug"]}):
        raise ValidationError(f"A product with slug '{data['slug']}' already exists", field="slug")
    pid = create_document(db, "product", data)
    logger.info("Created product %s (%s)", data["slug"], pid)
    return get_product(db, pid)
