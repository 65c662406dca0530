from sqlalchemy.orm import Session

from marketplace.config.settings import settings
from marketplace.database.models.catalog import Product
from marketplace.database.repositories.catalog_repository import CatalogRepository
from marketplace.utils.text import normalize_text


class CandidateResolver:
    """Free text → initial product candidates (name/description/brand/SKU substring match)."""

    def __init__(self, db: Session, limit: int | None = None):
        self.catalog = CatalogRepository(db)
        self.limit = limit if limit is not None else settings.candidate_limit

    def resolve(self, text: str | None) -> list[Product]:
        term = normalize_text(text)
        if not term:
            return []
        return self.catalog.find_products_by_text(term, limit=self.limit)

    def load(self, product_ids: list[str]) -> list[Product]:
        return self.catalog.get_products(product_ids)
