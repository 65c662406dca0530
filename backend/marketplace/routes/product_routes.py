from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from marketplace.config.settings import settings
from marketplace.database.engine import get_db
from marketplace.routes.dependencies import get_geocoder
from marketplace.schemas import ProductSearchBody
from marketplace.services.geocoder import Geocoder
from marketplace.services.product_search import search_nearby_products

router = APIRouter(prefix="/api/products", tags=["products"])


@router.post("/search")
async def search_products(
    body: ProductSearchBody,
    db: Session = Depends(get_db),
    geocoder: Geocoder = Depends(get_geocoder),
):
    """Nearby in-stock offers for a free-text query, no conversation involved."""
    geo = body.location.to_coordinates() if body.location else None
    if geo is None:
        raise HTTPException(status_code=400, detail="location {lat, lng} is required")

    items = await search_nearby_products(
        db,
        geocoder,
        text=body.search,
        geo=geo,
        radius_meters=body.radius_meters or settings.direct_search_radius_meters,
        product_limit=settings.direct_search_product_limit,
    )
    return {"items": items, "total": len(items)}
