"""
Local filesystem storage provider.
Uploaded files live under settings.upload_dir.
"""
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

from ..config import settings
from ..logging import get_logger
from .provider import StorageProvider


log = get_logger("swifttiger.storage")

CHUNK_SIZE = 64 * 1024


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider."""

    name = "local"

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.upload_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        """Get the local filesystem path for a given key."""
        # Remove leading slash and sanitize
        clean_key = key.replace("..", "").replace("\\", "/").lstrip("/")
        path = (self.base_dir / clean_key).resolve()
        if self.base_dir.resolve() not in path.parents:
            raise ValueError(f"Invalid storage key: {key}")
        return path

    def save(self, key: str, data: Union[bytes, BinaryIO]) -> int:
        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = data if isinstance(data, (bytes, bytearray)) else data.read()
        with open(path, "wb") as f:
            f.write(payload)
        return len(payload)

    def open(self, key: str) -> Iterator[bytes]:
        path = self._get_path(key)
        with open(path, "rb") as f:
            while True:
                chunk = f.read(CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    def local_path(self, key: str) -> Optional[str]:
        path = self._get_path(key)
        return str(path) if path.exists() else None

    def exists(self, key: str) -> bool:
        """Check if a file exists locally."""
        return self._get_path(key).exists()

    def delete(self, key: str) -> None:
        """Delete a file from local storage."""
        path = self._get_path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            log.warning("storage_delete_missing", key=key)
