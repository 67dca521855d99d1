"""Storage adapter interface and the local development implementation."""
import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from optimizer.settings import settings


class StorageAdapter(ABC):
    """
    Abstract storage adapter interface (S3-style).

    The engine reads source media and writes optimized outputs only through
    this interface; transports live outside the engine. Implementations
    signal failures with OSError (or subclasses), which the orchestrator
    translates into StorageError.
    """

    @abstractmethod
    async def save(self, key: str, data: bytes) -> str:
        """
        Save data to storage and return URL/path.

        Args:
            key: Storage key/path (e.g., "optimized/abc123/balanced/720p.mp4")
            data: Binary data to save

        Returns:
            URL or path string
        """

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """
        Retrieve data from storage.

        Args:
            key: Storage key/path

        Returns:
            Binary data
        """

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete data from storage.

        Args:
            key: Storage key/path or URL returned by save

        Returns:
            True if deleted, False if not found
        """


class LocalStorageAdapter(StorageAdapter):
    """
    Filesystem storage rooted at ``base_path`` (development and tests).

    File I/O runs on worker threads.
    """

    def __init__(self, base_path: Optional[str] = None):
        self.base_path = Path(base_path or settings.STORAGE_BASE_PATH)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        relative = Path(key.lstrip("/"))
        if ".." in relative.parts:
            raise PermissionError(f"Key escapes storage root: {key}")
        return self.base_path / relative

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    async def save(self, key: str, data: bytes) -> str:
        path = self._resolve(key)
        await asyncio.to_thread(self._write, path, data)
        return path.relative_to(self.base_path).as_posix()

    async def get(self, key: str) -> bytes:
        path = self._resolve(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise FileNotFoundError(f"Key not found: {key}") from None

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self._unlink, self._resolve(key))


def get_storage_adapter(base_path: Optional[str] = None) -> StorageAdapter:
    """Factory for the default storage adapter."""
    return LocalStorageAdapter(base_path)
