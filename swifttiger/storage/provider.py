from typing import BinaryIO, Iterator, Optional, Union


class StorageProvider:
    name = "base"

    def save(self, key: str, data: Union[bytes, BinaryIO]) -> int:
        """Store bytes under key and return the number of bytes written."""
        raise NotImplementedError

    def open(self, key: str) -> Iterator[bytes]:
        raise NotImplementedError

    def local_path(self, key: str) -> Optional[str]:
        return None

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError
