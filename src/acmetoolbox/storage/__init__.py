"""Storage backends for keys, certificates and order metadata."""

from acmetoolbox.storage.base import CertificateStorage
from acmetoolbox.storage.filesystem import FilesystemCertificateStorage
from acmetoolbox.storage.memory import MemoryCertificateStorage

__all__ = ["CertificateStorage", "FilesystemCertificateStorage", "MemoryCertificateStorage"]
