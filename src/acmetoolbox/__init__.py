"""acmetoolbox - ACME (RFC 8555) client protocol engine."""

from acmetoolbox.client import AcmeClient

__all__ = ["AcmeClient"]
__version__ = "0.1.0"
