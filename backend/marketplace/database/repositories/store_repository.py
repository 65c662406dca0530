from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.database.models.catalog import Store
from marketplace.utils.logger import get_logger

logger = get_logger(__name__)


class StoreRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, store_id: str) -> Store | None:
        return self.db.get(Store, store_id)

    def get_many(self, store_ids: list[str]) -> dict[str, Store]:
        ids = list(set(store_ids))
        if not ids:
            return {}
        stmt = select(Store).where(Store.id.in_(ids))
        return {s.id: s for s in self.db.execute(stmt).scalars().all()}

    def upsert(self, *, id: str, name: str, address: str, location: str) -> Store:
        """Create or update a store. A changed location link drops cached coordinates."""
        store = self.get(id)
        if store is None:
            store = Store(id=id)
            logger.info("upsert — creating store id=%s", id)
        elif store.location != location:
            logger.info("upsert — location changed for store id=%s, clearing cached coordinates", id)
            self._clear(store)
        store.name = name
        store.address = address
        store.location = location
        self.db.add(store)
        self.db.commit()
        return store

    def cache_coordinates(self, store: Store, lat: float, lng: float) -> Store:
        """Write geocoded coordinates onto the store, tagged with the link they came from."""
        store.location_lat = lat
        store.location_lng = lng
        store.location_coords_link = store.location
        self.db.add(store)
        self.db.commit()
        logger.debug("cache_coordinates — store=%s lat=%s lng=%s", store.id, lat, lng)
        return store

    @staticmethod
    def _clear(store: Store) -> None:
        store.location_lat = None
        store.location_lng = None
        store.location_coords_link = None
