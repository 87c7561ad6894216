"""DNS validator using the system resolver via dnspython."""

import dns.exception
import dns.resolver

from acmetoolbox._logging import get_logger
from acmetoolbox.challenges import challenge_record_name
from acmetoolbox.validators.base import DnsValidator

logger = get_logger(__name__)


class NativeDnsValidator(DnsValidator):
    """Checks DNS-01 records with a dnspython resolver.

    Args:
        resolver: Optional configured resolver (default: system configuration).
    """

    def __init__(self, resolver: dns.resolver.Resolver | None = None):
        self.resolver = resolver or dns.resolver.Resolver()

    def txt_records(self, name: str) -> list[str]:
        """Resolve the name and return its TXT strings.

        Returns an empty list if the name could not be resolved.
        """
        try:
            answer = self.resolver.resolve(name, "TXT")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        except dns.exception.DNSException as e:
            logger.warning("DNS lookup failed", extra={"hostname": name, "error": str(e)})
            return []

        return [txt.decode("utf-8") for rdata in answer for txt in rdata.strings]

    def check_challenge(self, domain: str, digest: str) -> bool:
        hostname = challenge_record_name(domain)
        return digest in self.txt_records(hostname)
