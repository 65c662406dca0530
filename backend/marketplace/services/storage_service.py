"""
Object storage for customer uploads.

Blobs are written under settings.storage_dir/<folder>/<uuid><ext> and served
by the app's /media static mount, so the public URL is
settings.media_base_url + "/<folder>/<uuid><ext>".
"""
import mimetypes
import uuid
from dataclasses import dataclass
from pathlib import Path

from marketplace.config.settings import settings
from marketplace.utils.logger import get_logger

logger = get_logger(__name__)


class StorageError(Exception):
    pass


@dataclass
class StoredObject:
    key: str
    url: str


class LocalObjectStorage:
    def __init__(self, root: str | Path | None = None, base_url: str | None = None):
        self.root = Path(root or settings.storage_dir)
        self.base_url = (base_url or settings.media_base_url).rstrip("/")

    def put(self, data: bytes, *, content_type: str, folder: str) -> StoredObject:
        ext = mimetypes.guess_extension(content_type) or ""
        key = f"{folder.strip('/')}/{uuid.uuid4().hex}{ext}"
        path = self.root / key
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            logger.error("put — failed to write %s: %s", path, e)
            raise StorageError(f"Could not store upload: {e}") from e
        logger.info("put — stored key=%s bytes=%d", key, len(data))
        return StoredObject(key=key, url=f"{self.base_url}/{key}")

    def delete(self, key: str) -> None:
        (self.root / key).unlink(missing_ok=True)


object_storage = LocalObjectStorage()
