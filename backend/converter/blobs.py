"""Transient byte handles for converted images."""
import logging
import uuid

logger = logging.getLogger("converter.blobs")


class BlobStore:
    """Bytes addressed by ``blob:`` URLs until revoked.

    Every handle must be revoked (or the store cleared) once its result set is
    discarded, otherwise converted images pile up for the whole session.
    """

    def __init__(self):
        self._blobs: dict[str, tuple[str, bytes]] = {}

    def create(self, data: bytes, media_type: str) -> str:
        url = f"blob:{uuid.uuid4()}"
        self._blobs[url] = (media_type, data)
        return url

    def get(self, url: str) -> tuple[str, bytes]:
        """Return (media_type, data). Raises KeyError for revoked or unknown handles."""
        return self._blobs[url]

    def revoke(self, url: str) -> bool:
        return self._blobs.pop(url, None) is not None

    def clear(self) -> int:
        count = len(self._blobs)
        self._blobs.clear()
        if count:
            logger.debug("Released %s blob handles", count)
        return count

    def __contains__(self, url: object) -> bool:
        return url in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)
