"""
Catalog Repository
──────────────────
Read access to products, offers and categories for the search paths, plus
the upserts used by seed_catalog.py.
"""
import json

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from marketplace.database.models.catalog import Category, Offer, Product
from marketplace.utils.logger import get_logger

logger = get_logger(__name__)


class CatalogRepository:
    def __init__(self, db: Session):
        self.db = db

    # ── Products ──────────────────────────────────────────────────────────────

    def find_products_by_text(self, term: str, limit: int | None = None) -> list[Product]:
        """Case-insensitive substring match on name, description, brand and SKU."""
        stmt = (
            select(Product)
            .where(
                or_(
                    Product.name.icontains(term, autoescape=True),
                    Product.description.icontains(term, autoescape=True),
                    Product.brand_name.icontains(term, autoescape=True),
                    Product.sku.icontains(term, autoescape=True),
                )
            )
            .order_by(Product.created_at.asc(), Product.id.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        results = list(self.db.execute(stmt).scalars().all())
        logger.debug("find_products_by_text — term=%r limit=%s matched=%d", term, limit, len(results))
        return results

    def list_products(self, limit: int | None = None) -> list[Product]:
        stmt = select(Product).order_by(Product.created_at.asc(), Product.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def get_products(self, product_ids: list[str]) -> list[Product]:
        """Fetch products by id, returned in the order of `product_ids`."""
        if not product_ids:
            return []
        stmt = select(Product).where(Product.id.in_(product_ids))
        by_id = {p.id: p for p in self.db.execute(stmt).scalars().all()}
        return [by_id[pid] for pid in product_ids if pid in by_id]

    def get_available_offers(self, product_ids: list[str]) -> list[Offer]:
        if not product_ids:
            return []
        stmt = (
            select(Offer)
            .where(Offer.product_id.in_(product_ids), Offer.is_available.is_(True))
            .order_by(Offer.id.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_categories(self, category_ids: list[str]) -> dict[str, Category]:
        ids = [cid for cid in set(category_ids) if cid]
        if not ids:
            return {}
        stmt = select(Category).where(Category.id.in_(ids))
        return {c.id: c for c in self.db.execute(stmt).scalars().all()}

    # ── Upserts (seeding) ─────────────────────────────────────────────────────

    def upsert_category(self, *, id: str, name: str, description: str | None = None) -> Category:
        category = self.db.get(Category, id) or Category(id=id)
        category.name = name
        category.description = description
        self.db.add(category)
        self.db.commit()
        return category

    def upsert_product(self, *, id: str, images: list[str] | None = None, **fields) -> Product:
        product = self.db.get(Product, id) or Product(id=id)
        for key, value in fields.items():
            setattr(product, key, value)
        product.images_json = json.dumps(images or [])
        self.db.add(product)
        self.db.commit()
        return product

    def upsert_offer(self, *, id: str, **fields) -> Offer:
        offer = self.db.get(Offer, id) or Offer(id=id)
        for key, value in fields.items():
            setattr(offer, key, value)
        self.db.add(offer)
        self.db.commit()
        return offer
