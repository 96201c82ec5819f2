"""
Directory-backed blob storage.

Each key maps to ``<directory>/<key>.vault``. Writes go to a temporary
file in the same directory which is flushed, fsync'ed and renamed over
the target; the directory is then fsync'ed so the rename survives a power
loss. A crash mid-write leaves the previous blob intact.
"""
import os
import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Union

from .abstract import AbstractStorage
from ..exceptions import IOFailure, NotFoundError

logger = logging.getLogger("navigator.vault")

_SUFFIX = ".vault"


class FileStorage(AbstractStorage):
    """Blob storage on the local filesystem, owner-only permissions."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        try:
            self.directory.mkdir(parents=True, exist_ok=True, mode=0o700)
        except OSError as err:
            raise IOFailure(
                f"Cannot create vault directory {self.directory}"
            ) from err

    def _path(self, key: str) -> Path:
        return self.directory / f"{self.validate_key(key)}{_SUFFIX}"

    def _read(self, path: Path) -> bytes:
        with open(path, "rb") as fp:
            return fp.read()

    def _write(self, path: Path, data: bytes) -> None:
        fd, tmp = tempfile.mkstemp(
            dir=self.directory, prefix=f".{path.stem}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as fp:
                fp.write(data)
                fp.flush()
                os.fsync(fp.fileno())
            os.chmod(tmp, 0o600)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
        self._sync_directory()

    def _sync_directory(self) -> None:
        """Persist the rename itself."""
        fd = os.open(self.directory, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await asyncio.to_thread(self._read, path)
        except FileNotFoundError:
            raise NotFoundError(f"No blob stored for key {key}") from None
        except OSError as err:
            logger.error("Vault read failed for key=%s: %s", key, err)
            raise IOFailure(f"Cannot read blob for key {key}") from err

    async def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(self._write, path, bytes(data))
        except OSError as err:
            logger.error("Vault write failed for key=%s: %s", key, err)
            raise IOFailure(f"Cannot write blob for key {key}") from err

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(os.remove, path)
        except FileNotFoundError:
            raise NotFoundError(f"No blob stored for key {key}") from None
        except OSError as err:
            logger.error("Vault delete failed for key=%s: %s", key, err)
            raise IOFailure(f"Cannot delete blob for key {key}") from err

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).exists)
