from typing import Any, Dict, List

from sqlalchemy.orm import Session

from marketplace.database.repositories.catalog_repository import CatalogRepository
from marketplace.services.geocoder import Geocoder
from marketplace.services.offer_aggregator import OfferAggregator
from marketplace.utils.geo import Coordinates
from marketplace.utils.text import normalize_text


async def search_nearby_products(
    db: Session,
    geocoder: Geocoder,
    *,
    text: str | None,
    geo: Coordinates,
    radius_meters: int,
    product_limit: int,
) -> List[Dict[str, Any]]:
    """Non-conversational search: text match (or the whole catalog for blank text) joined to nearby offers."""
    catalog = CatalogRepository(db)
    term = normalize_text(text)
    if term:
        products = catalog.find_products_by_text(term, limit=product_limit)
    else:
        products = catalog.list_products(limit=product_limit)
    return await OfferAggregator(db, geocoder).aggregate(products, geo, radius_meters)
