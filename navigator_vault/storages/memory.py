"""In-process blob storage, used for tests and embedding."""
from .abstract import AbstractStorage
from ..exceptions import NotFoundError


class MemoryStorage(AbstractStorage):
    """Dict-backed storage; blobs are replaced whole, so writes are atomic."""

    def __init__(self):
        self._blobs: dict[str, bytes] = {}

    def __len__(self) -> int:
        return len(self._blobs)

    async def get(self, key: str) -> bytes:
        self.validate_key(key)
        try:
            return self._blobs[key]
        except KeyError:
            raise NotFoundError(f"No blob stored for key {key}") from None

    async def put(self, key: str, data: bytes) -> None:
        self.validate_key(key)
        self._blobs[key] = bytes(data)

    async def delete(self, key: str) -> None:
        self.validate_key(key)
        if self._blobs.pop(key, None) is None:
            raise NotFoundError(f"No blob stored for key {key}")

    async def exists(self, key: str) -> bool:
        self.validate_key(key)
        return key in self._blobs
