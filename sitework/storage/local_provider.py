"""
Local filesystem storage for uploaded documents, evidence exports and posters.
"""
from pathlib import Path
from typing import Optional, BinaryIO

import structlog

from ..config import settings
from .provider import StorageProvider

log = structlog.get_logger(__name__)


class LocalStorageProvider(StorageProvider):
    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.storage_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        clean_key = key.replace("\\", "/").replace("..", "").lstrip("/")
        return self.base_dir / clean_key

    def save(self, key: str, data: bytes | BinaryIO) -> None:
        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = data.read() if hasattr(data, "read") else data
        with open(path, "wb") as f:
            f.write(payload)
        log.info("storage_saved", key=key, size=len(payload))

    def open(self, key: str) -> bytes:
        return self._get_path(key).read_bytes()

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()

    def delete(self, key: str) -> None:
        path = self._get_path(key)
        if path.exists():
            path.unlink()
            log.info("storage_deleted", key=key)


_provider: Optional[StorageProvider] = None


def get_storage() -> StorageProvider:
    global _provider
    if _provider is None:
        _provider = LocalStorageProvider()
    return _provider
