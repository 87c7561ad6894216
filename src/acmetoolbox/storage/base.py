"""Abstract base class for certificate storage."""

from abc import ABC, abstractmethod


class CertificateStorage(ABC):
    """Abstract interface for key, certificate and metadata storage.

    Implementations only provide the three metadata primitives. Account
    keys and per-domain artifacts are stored as metadata under
    well-known names, so a backend can store or deploy them anywhere
    (filesystem, database, remote server).

    Domain arguments are certificate base names and may include a
    ``*.`` wildcard label.
    """

    @abstractmethod
    def get_metadata(self, key: str) -> str | None:
        """Return the value stored under key, or None if absent."""
        ...

    @abstractmethod
    def set_metadata(self, key: str, value: str | None) -> None:
        """Store value under key. A value of None removes the key.

        Raises:
            Exception: If the backend cannot persist the value.
        """
        ...

    @abstractmethod
    def has_metadata(self, key: str) -> bool:
        """Return True if a value is stored under key."""
        ...

    def get_account_public_key(self) -> str | None:
        return self.get_metadata("account.public")

    def set_account_public_key(self, key: str) -> None:
        self.set_metadata("account.public", key)

    def get_account_private_key(self) -> str | None:
        return self.get_metadata("account.key")

    def set_account_private_key(self, key: str) -> None:
        self.set_metadata("account.key", key)

    def get_certificate(self, domain: str) -> str | None:
        return self.get_metadata(f"{domain}.crt")

    def set_certificate(self, domain: str, certificate: str) -> None:
        self.set_metadata(f"{domain}.crt", certificate)

    def get_full_chain_certificate(self, domain: str) -> str | None:
        return self.get_metadata(f"{domain}.fullchain.crt")

    def set_full_chain_certificate(self, domain: str, certificate: str) -> None:
        self.set_metadata(f"{domain}.fullchain.crt", certificate)

    def get_public_key(self, domain: str) -> str | None:
        return self.get_metadata(f"{domain}.public")

    def set_public_key(self, domain: str, key: str | None) -> None:
        self.set_metadata(f"{domain}.public", key)

    def get_private_key(self, domain: str) -> str | None:
        return self.get_metadata(f"{domain}.key")

    def set_private_key(self, domain: str, key: str | None) -> None:
        self.set_metadata(f"{domain}.key", key)
