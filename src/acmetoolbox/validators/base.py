"""Abstract base class for DNS-01 self-check validators."""

from abc import ABC, abstractmethod


class DnsValidator(ABC):
    """Abstract interface for checking that a DNS-01 TXT record is published.

    Used by an order before it asks the CA to validate a dns-01
    challenge, so the CA is only asked once the record is visible.
    """

    @abstractmethod
    def check_challenge(self, domain: str, digest: str) -> bool:
        """Check for the challenge TXT record.

        Looks up TXT records at _acme-challenge.{domain} (any leading
        ``*.`` removed) and compares them with the expected digest.

        Args:
            domain: The identifier being validated, possibly a wildcard.
            digest: The expected TXT record value.

        Returns:
            True if a matching record was found. Lookup failures
            are reported as False.
        """
        ...
