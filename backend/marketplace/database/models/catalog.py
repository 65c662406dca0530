"""
Catalog Models
──────────────
The read side of the marketplace that the customer search runs against:
categories, products, stores and the offers that tie a product to a store.

Store coordinates are a cache-aside copy of what the geocoder derived from
`location`. `location_coords_link` remembers which link they came from so a
changed link makes the cached pair stale.
"""
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database.engine import Base
from marketplace.utils.clock import new_id


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    brand_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    brand_name: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    sku: Mapped[str] = mapped_column(String(120), index=True)
    # Free-form package descriptor, e.g. "500ml", "1kg"
    package_info: Mapped[str | None] = mapped_column(String(120), nullable=True)
    # JSON list of image URLs
    images_json: Mapped[str] = mapped_column(Text, default="[]")
    storage_life: Mapped[str | None] = mapped_column(String(120), nullable=True)
    allergens: Mapped[str | None] = mapped_column(Text, nullable=True)
    age_restrictions: Mapped[str | None] = mapped_column(String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class Store(Base):
    __tablename__ = "stores"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255))
    address: Mapped[str] = mapped_column(String(500), default="")
    # Map-service link (plain or shortened)
    location: Mapped[str] = mapped_column(String(1000), default="")
    location_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_coords_link: Mapped[str | None] = mapped_column(String(1000), nullable=True)


class Offer(Base):
    __tablename__ = "offers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id"), index=True)
    store_id: Mapped[str] = mapped_column(ForeignKey("stores.id"), index=True)
    price: Mapped[float] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String(10))
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
