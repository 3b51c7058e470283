from typing import BinaryIO


class StorageProvider:
    def save(self, key: str, data: bytes | BinaryIO) -> None:
        raise NotImplementedError

    def open(self, key: str) -> bytes:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError
