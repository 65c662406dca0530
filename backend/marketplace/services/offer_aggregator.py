"""
Offer Aggregator
────────────────
Joins products to available, in-radius store offers.

Both the conversational flow and the direct product search call
`aggregate` with an explicit radius; defaults live with the callers
(settings.conversation_radius_meters / settings.direct_search_radius_meters).

Per product the surviving offers are sorted nearest first; a product with
no surviving offer is dropped. Entries are ranked by their nearest offer,
ties keep the candidate order. A store whose location cannot be resolved
contributes no offers and does not fail the search.
"""
import json
from typing import Any, Dict, List, Sequence

from sqlalchemy.orm import Session

from marketplace.database.models.catalog import Category, Offer, Product, Store
from marketplace.database.repositories.catalog_repository import CatalogRepository
from marketplace.database.repositories.store_repository import StoreRepository
from marketplace.services.geocoder import Geocoder, StoreCoordinateCache
from marketplace.utils.geo import Coordinates, distance_meters
from marketplace.utils.logger import get_logger

logger = get_logger(__name__)


def serialize_product(product: Product, category: Category | None) -> Dict[str, Any]:
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "images": json.loads(product.images_json or "[]"),
        "category": {"id": category.id, "name": category.name} if category else None,
        "sku": product.sku,
        "brandId": product.brand_id,
        "brandName": product.brand_name,
        "packageInfo": product.package_info,
        "storageLife": product.storage_life,
        "allergens": product.allergens,
        "ageRestrictions": product.age_restrictions,
    }


def serialize_offer(offer: Offer, store: Store, distance: int) -> Dict[str, Any]:
    return {
        "offerId": offer.id,
        "price": offer.price,
        "currency": offer.currency,
        "isAvailable": offer.is_available,
        "quantity": offer.quantity,
        "store": {
            "id": store.id,
            "name": store.name,
            "address": store.address,
            "location": store.location,
            "distanceMeters": distance,
        },
    }


class OfferAggregator:
    def __init__(self, db: Session, geocoder: Geocoder):
        self.catalog = CatalogRepository(db)
        self.stores = StoreRepository(db)
        self.coordinates = StoreCoordinateCache(self.stores, geocoder)

    async def aggregate(
        self,
        products: Sequence[Product],
        geo: Coordinates,
        radius_meters: int,
    ) -> List[Dict[str, Any]]:
        if not products:
            return []

        product_ids = [p.id for p in products]
        offers = self.catalog.get_available_offers(product_ids)
        stores = self.stores.get_many([o.store_id for o in offers])
        categories = self.catalog.get_categories([p.category_id for p in products])

        # Resolve each store once per search
        store_coords: Dict[str, Coordinates | None] = {}
        offers_by_product: Dict[str, List[Dict[str, Any]]] = {}
        excluded_stores = set()

        for offer in offers:
            store = stores.get(offer.store_id)
            if store is None or not store.location:
                continue
            if store.id not in store_coords:
                store_coords[store.id] = await self.coordinates.get(store)
            coords = store_coords[store.id]
            if coords is None:
                excluded_stores.add(store.id)
                continue

            distance = distance_meters(geo, coords)
            if distance > radius_meters:
                continue
            offers_by_product.setdefault(offer.product_id, []).append(
                serialize_offer(offer, store, round(distance))
            )

        entries = []
        for product in products:
            product_offers = offers_by_product.get(product.id)
            if not product_offers:
                continue
            product_offers.sort(key=lambda o: o["store"]["distanceMeters"])
            entries.append({
                "product": serialize_product(product, categories.get(product.category_id)),
                "offers": product_offers,
            })
        entries.sort(key=lambda e: e["offers"][0]["store"]["distanceMeters"])

        logger.info(
            "aggregate — products=%d offers=%d stores_excluded=%d radius=%d entries=%d",
            len(products), len(offers), len(excluded_stores), radius_meters, len(entries),
        )
        return entries
