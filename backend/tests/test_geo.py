import asyncio

import httpx

from marketplace.database.repositories.store_repository import StoreRepository
from marketplace.services.geocoder import Geocoder, StoreCoordinateCache, extract_coordinates
from marketplace.utils.geo import Coordinates, distance_meters
from tests.conftest import ORIGIN, FakeGeocoder, map_link, point_north


def test_distance_zero_for_same_point():
    assert distance_meters(ORIGIN, ORIGIN) == 0


def test_distance_one_degree_latitude():
    a = Coordinates(lat=0.0, lng=0.0)
    b = Coordinates(lat=1.0, lng=0.0)
    assert abs(distance_meters(a, b) - 111194.93) < 1


def test_extract_coordinates_reads_longitude_first():
    coords = extract_coordinates("https://2gis.kz/almaty/geo/76.945000,43.238000")
    assert coords == Coordinates(lat=43.238, lng=76.945)


def test_extract_coordinates_accepts_encoded_comma():
    coords = extract_coordinates("https://2gis.kz/almaty?m=76.9450%2C43.2380%2F16")
    assert coords == Coordinates(lat=43.238, lng=76.945)


def test_extract_coordinates_lat_first_order():
    coords = extract_coordinates("https://maps.example.com/?q=43.2380,76.9450", order="lat,lon")
    assert coords == Coordinates(lat=43.238, lng=76.945)


def test_extract_coordinates_without_pair():
    assert extract_coordinates("https://2gis.kz/almaty/firm/12345") is None
    assert extract_coordinates("") is None
    assert extract_coordinates(None) is None


def _transport(handler):
    return httpx.MockTransport(handler)


def test_short_link_follows_one_redirect():
    seen = []

    def handler(request):
        seen.append((request.method, str(request.url)))
        return httpx.Response(302, headers={"location": "https://2gis.kz/almaty/geo/76.945,43.238"})

    geocoder = Geocoder(short_link_hosts=["go.2gis.com"], transport=_transport(handler))
    coords = asyncio.run(geocoder.resolve("https://go.2gis.com/abc12"))

    assert coords == Coordinates(lat=43.238, lng=76.945)
    assert seen == [("HEAD", "https://go.2gis.com/abc12")]


def test_short_link_without_location_header_returns_none():
    geocoder = Geocoder(
        short_link_hosts=["go.2gis.com"],
        transport=_transport(lambda request: httpx.Response(200)),
    )
    assert asyncio.run(geocoder.resolve("https://go.2gis.com/abc12")) is None


def test_short_link_network_error_returns_none():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    geocoder = Geocoder(short_link_hosts=["go.2gis.com"], transport=_transport(handler))
    assert asyncio.run(geocoder.resolve("https://go.2gis.com/abc12")) is None


def test_plain_link_is_parsed_without_http():
    def handler(request):
        raise AssertionError("plain links must not be fetched")

    geocoder = Geocoder(short_link_hosts=["go.2gis.com"], transport=_transport(handler))
    coords = asyncio.run(geocoder.resolve("https://2gis.kz/almaty/geo/76.945,43.238"))
    assert coords == Coordinates(lat=43.238, lng=76.945)


def test_malformed_link_returns_none():
    assert asyncio.run(Geocoder().resolve("not a link")) is None
    assert asyncio.run(Geocoder().resolve(None)) is None
    assert asyncio.run(Geocoder().resolve("http://[bad-host/geo/76.9,43.2")) is None


def test_store_cache_writes_coordinates_after_first_resolution(db, add_store):
    target = point_north(ORIGIN, 300)
    store = add_store("Corner shop", map_link(target))
    fake = FakeGeocoder({store.location: target})
    cache = StoreCoordinateCache(StoreRepository(db), fake)

    assert asyncio.run(cache.get(store)) == target
    assert asyncio.run(cache.get(store)) == target
    assert len(fake.calls) == 1
    assert store.location_coords_link == store.location


def test_store_cache_invalidated_when_link_changes(db, add_store):
    old = point_north(ORIGIN, 300)
    new = point_north(ORIGIN, 900)
    store = add_store("Moved shop", map_link(old), lat=old.lat, lng=old.lng, coords_link=map_link(old))
    StoreRepository(db).upsert(id=store.id, name=store.name, address="", location=map_link(new))

    assert store.location_lat is None
    fake = FakeGeocoder({map_link(new): new})
    coords = asyncio.run(StoreCoordinateCache(StoreRepository(db), fake).get(store))
    assert coords == new
    assert fake.calls == [map_link(new)]


def test_store_cache_failure_is_not_cached(db, add_store):
    store = add_store("Nowhere", "https://2gis.kz/almaty/firm/1")
    fake = FakeGeocoder()
    cache = StoreCoordinateCache(StoreRepository(db), fake)

    assert asyncio.run(cache.get(store)) is None
    assert store.location_lat is None


class _RaisingGeocoder(FakeGeocoder):
    async def resolve(self, link):
        self.calls.append(link)
        raise RuntimeError("geocoder down")


def test_store_cache_treats_geocoder_errors_as_unresolvable(db, add_store):
    store = add_store("Flaky", map_link(point_north(ORIGIN, 100)))
    cache = StoreCoordinateCache(StoreRepository(db), _RaisingGeocoder())

    assert asyncio.run(cache.get(store)) is None
    assert store.location_lat is None
