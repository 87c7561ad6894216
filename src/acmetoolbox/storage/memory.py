"""In-memory certificate storage."""

from acmetoolbox.storage.base import CertificateStorage


class MemoryCertificateStorage(CertificateStorage):
    """Dict-backed storage. Nothing survives the process; useful for tests and one-shot runs."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get_metadata(self, key: str) -> str | None:
        return self._data.get(key)

    def set_metadata(self, key: str, value: str | None) -> None:
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = value

    def has_metadata(self, key: str) -> bool:
        return key in self._data
