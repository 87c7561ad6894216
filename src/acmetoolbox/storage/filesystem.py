"""Filesystem certificate storage."""

import os
from pathlib import Path

from acmetoolbox._logging import get_logger
from acmetoolbox.exceptions import AcmeRuntimeError
from acmetoolbox.storage.base import CertificateStorage

logger = get_logger(__name__)


class FilesystemCertificateStorage(CertificateStorage):
    """Stores every key, certificate and metadata value as one file in a directory.

    A ``*`` in a key is written as ``wildcard`` in the file name, so
    ``*.example.org.crt`` lands in ``wildcard.example.org.crt``.

    Args:
        directory: Storage directory (default: ``./certificates``). Created if missing.

    Raises:
        AcmeRuntimeError: If the directory cannot be created or is not writable.
    """

    def __init__(self, directory: str | os.PathLike[str] | None = None):
        self.directory = Path(directory) if directory is not None else Path.cwd() / "certificates"

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise AcmeRuntimeError(f"{self.directory} is not writable") from e

        if not os.access(self.directory, os.W_OK):
            raise AcmeRuntimeError(f"{self.directory} is not writable")

    def _path(self, key: str) -> Path:
        return self.directory / key.replace("*", "wildcard")

    def get_metadata(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text()

    def set_metadata(self, key: str, value: str | None) -> None:
        path = self._path(key)
        if value is None:
            path.unlink(missing_ok=True)
            logger.debug("Removed stored value", extra={"path": str(path)})
        else:
            path.write_text(value)
            logger.debug("Stored value", extra={"path": str(path)})

    def has_metadata(self, key: str) -> bool:
        return self._path(key).exists()
