"""
Geocoder
────────
Turns a store's map-service link into coordinates.

  1. Shortened links (hosts in settings.geocoder_short_link_hosts) are
     resolved with a single HEAD request; a 3xx Location header replaces
     the link, anything else keeps it.
  2. The first "<number>.<number>,<number>.<number>" pair in the final URL
     (the comma may be URL-encoded) is read as coordinates, in the order
     given by settings.geocoder_coordinate_order.

Every failure ends in None. Callers exclude the store; nothing is raised.
"""
import re
from urllib.parse import urlparse

import httpx

from marketplace.config.settings import settings
from marketplace.database.models.catalog import Store
from marketplace.database.repositories.store_repository import StoreRepository
from marketplace.utils.geo import Coordinates
from marketplace.utils.logger import get_logger

logger = get_logger(__name__)

COORDINATE_PAIR = re.compile(r"(-?\d+\.\d+)(?:,|%2C|%2c)(-?\d+\.\d+)")


def extract_coordinates(url: str | None, order: str | None = None) -> Coordinates | None:
    if not url:
        return None
    match = COORDINATE_PAIR.search(str(url))
    if not match:
        return None
    first, second = float(match.group(1)), float(match.group(2))
    order = order or settings.geocoder_coordinate_order
    lat, lng = (second, first) if order == "lon,lat" else (first, second)
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return None
    return Coordinates(lat=lat, lng=lng)


class Geocoder:
    def __init__(
        self,
        short_link_hosts: list[str] | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.short_link_hosts = set(short_link_hosts or settings.geocoder_short_link_hosts)
        self.timeout = timeout if timeout is not None else settings.geocoder_timeout_seconds
        self._transport = transport

    def is_short_link(self, link: str) -> bool:
        host = (urlparse(link).hostname or "").lower()
        return host in self.short_link_hosts

    async def resolve(self, link: str | None) -> Coordinates | None:
        if not link or not isinstance(link, str):
            return None

        try:
            short = self.is_short_link(link)
        except ValueError as e:
            logger.warning("resolve — malformed link %r: %s", link, e)
            return None

        final_url = link
        if short:
            try:
                final_url = await self._follow_redirect(link)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                logger.warning("resolve — redirect lookup failed for %s: %s", link, e)
                return None

        coords = extract_coordinates(final_url)
        if coords is None:
            logger.info("resolve — no coordinates in %s", final_url)
        return coords

    async def _follow_redirect(self, link: str) -> str:
        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=False, transport=self._transport
        ) as client:
            response = await client.head(link)
        if response.is_redirect and response.headers.get("location"):
            return response.headers["location"]
        return link


class StoreCoordinateCache:
    """Cache-aside coordinates on the store row.

    A cached pair is valid only while the store's current link equals the
    link it was derived from; otherwise the store is geocoded again and the
    cache rewritten. Concurrent fills write identical values.
    """

    def __init__(self, stores: StoreRepository, geocoder: Geocoder):
        self.stores = stores
        self.geocoder = geocoder

    @staticmethod
    def cached(store: Store) -> Coordinates | None:
        if store.location_lat is None or store.location_lng is None:
            return None
        if store.location_coords_link != store.location:
            return None
        return Coordinates(lat=store.location_lat, lng=store.location_lng)

    async def get(self, store: Store) -> Coordinates | None:
        coords = self.cached(store)
        if coords is not None:
            return coords
        try:
            coords = await self.geocoder.resolve(store.location)
        except Exception as e:
            logger.warning("get — store=%s geocoding raised, excluding it: %s", store.id, e)
            return None
        if coords is None:
            logger.warning("get — store=%s excluded, location not resolvable: %r", store.id, store.location)
            return None
        self.stores.cache_coordinates(store, coords.lat, coords.lng)
        return coords


geocoder = Geocoder()
