"""DNS validators for DNS-01 self-checks."""

from acmetoolbox.validators.base import DnsValidator
from acmetoolbox.validators.doh import DnsOverHttpsValidator
from acmetoolbox.validators.native import NativeDnsValidator

__all__ = ["DnsOverHttpsValidator", "DnsValidator", "NativeDnsValidator"]
