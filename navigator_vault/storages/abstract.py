"""Persistence Adapter contract: opaque blobs keyed by account id."""
import re
import logging
from abc import ABC, abstractmethod

from ..exceptions import ValidationError

logger = logging.getLogger("navigator.vault")

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class AbstractStorage(ABC):
    """Blob storage used by the credential store.

    Implementations hold no business logic. They must make ``put`` atomic
    at the blob level: a reader sees either the old or the new blob.
    """

    def validate_key(self, key: str) -> str:
        """Reject keys that are not plain identifiers."""
        if not isinstance(key, str) or not _KEY_PATTERN.match(key):
            raise ValidationError(f"Invalid storage key: {key!r}")
        return key

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Return the blob stored under ``key``.

        Raises:
            NotFoundError: If nothing is stored under ``key``.
            IOFailure: If the backend is unavailable.
        """

    @abstractmethod
    async def put(self, key: str, data: bytes) -> None:
        """Atomically replace the blob stored under ``key``.

        Raises:
            IOFailure: If the write could not be completed.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the blob stored under ``key``.

        Raises:
            NotFoundError: If nothing is stored under ``key``.
            IOFailure: If the backend is unavailable.
        """

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check whether a blob is stored under ``key``."""
