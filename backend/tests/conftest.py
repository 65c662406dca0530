import os
import tempfile

# Settings are read at import time: point them at throwaway resources first.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="marketplace-media-"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient

from marketplace.database import models  # noqa: F401
from marketplace.database.engine import Base, SessionLocal, engine
from marketplace.database.models import Offer, Product, Store
from marketplace.services.intent_extractor import ExtractionError, ExtractorDecision
from marketplace.utils.geo import Coordinates

# Caller position used across tests (central Almaty)
ORIGIN = Coordinates(lat=43.2380, lng=76.9450)
METERS_PER_DEGREE_LAT = 111194.93


def point_north(origin: Coordinates, meters: float) -> Coordinates:
    return Coordinates(lat=origin.lat + meters / METERS_PER_DEGREE_LAT, lng=origin.lng)


def map_link(coords: Coordinates) -> str:
    """2GIS-style link, longitude first."""
    return f"https://2gis.kz/almaty/geo/{coords.lng:.6f},{coords.lat:.6f}"


class FakeExtractor:
    """Stands in for the chat-model extractor: returns a fixed decision or raises."""

    def __init__(self, decision: ExtractorDecision | None = None, error: Exception | None = None):
        self.decision = decision
        self.error = error
        self.calls = []

    async def extract(self, *, text, candidates, known):
        self.calls.append({"text": text, "candidates": candidates, "known": known})
        if self.error is not None:
            raise self.error
        if self.decision is None:
            raise ExtractionError("no decision configured")
        return self.decision


class FakeGeocoder:
    """Resolves links from a dict; unknown links resolve to None."""

    def __init__(self, mapping: dict | None = None):
        self.mapping = mapping or {}
        self.calls = []

    async def resolve(self, link):
        self.calls.append(link)
        return self.mapping.get(link)


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def add_product(db):
    counter = {"n": 0}

    def _add(name, brand=None, package=None, sku=None, description=None, category_id=None):
        counter["n"] += 1
        product = Product(
            name=name,
            brand_name=brand,
            package_info=package,
            sku=sku or f"SKU-{counter['n']:04d}",
            description=description,
            category_id=category_id,
        )
        db.add(product)
        db.commit()
        return product

    return _add


@pytest.fixture
def add_store(db):
    def _add(name, location, address="", lat=None, lng=None, coords_link=None):
        store = Store(
            name=name,
            address=address,
            location=location,
            location_lat=lat,
            location_lng=lng,
            location_coords_link=coords_link,
        )
        db.add(store)
        db.commit()
        return store

    return _add


@pytest.fixture
def add_offer(db):
    def _add(product, store, price=100.0, currency="KZT", available=True, quantity=5):
        offer = Offer(
            product_id=product.id,
            store_id=store.id,
            price=price,
            currency=currency,
            is_available=available,
            quantity=quantity,
        )
        db.add(offer)
        db.commit()
        return offer

    return _add


@pytest.fixture
def extractor():
    return FakeExtractor(error=ExtractionError("offline"))


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def client(db, extractor, geocoder):
    from marketplace.main import app
    from marketplace.routes.dependencies import get_geocoder, get_intent_extractor

    app.dependency_overrides[get_intent_extractor] = lambda: extractor
    app.dependency_overrides[get_geocoder] = lambda: geocoder
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
