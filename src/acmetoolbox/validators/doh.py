"""DNS-over-HTTPS validator using a JSON resolver API."""

import httpx

from acmetoolbox._logging import get_logger
from acmetoolbox.challenges import challenge_record_name
from acmetoolbox.validators.base import DnsValidator

logger = get_logger(__name__)

TXT_RECORD_TYPE = 16


class DnsOverHttpsValidator(DnsValidator):
    """Checks DNS-01 records through a DNS-over-HTTPS JSON API.

    Talks to Google's resolver by default; Cloudflare's endpoints speak
    the same ``application/dns-json`` format.

    Args:
        base_url: Resolver endpoint (default: Google).
        http_client: Optional httpx client to use instead of a private one.
        timeout: HTTP request timeout in seconds (default: 30).
    """

    DNS_GOOGLE = "https://dns.google.com/resolve"
    DNS_MOZILLA = "https://mozilla.cloudflare-dns.com/dns-query"
    DNS_CLOUDFLARE = "https://cloudflare-dns.com/dns-query"

    def __init__(
        self,
        base_url: str | None = None,
        http_client: httpx.Client | None = None,
        timeout: float = 30,
    ):
        self.base_url = base_url or self.DNS_GOOGLE
        self.timeout = timeout
        self._owns_http = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        """Close the HTTP client if this validator created it."""
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "DnsOverHttpsValidator":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def get(self, name: str, record_type: str) -> dict:
        """Query the resolver and return the decoded JSON answer.

        Raises:
            httpx.HTTPError: If the request fails.
            ValueError: If the body is not JSON or reports an error.
        """
        response = self._http.get(
            self.base_url,
            params={
                "name": name,
                "type": record_type,
                # no geotagged answers
                "edns_client_subnet": "0.0.0.0/0",
                # cloudflare requires this
                "ct": "application/dns-json",
            },
            headers={"Accept": "application/dns-json"},
        )
        response.raise_for_status()

        data = response.json()
        if data.get("errors"):
            raise ValueError(data["errors"][0].get("message", "DNS query failed"))
        return data

    def check_challenge(self, domain: str, digest: str) -> bool:
        hostname = challenge_record_name(domain)

        try:
            data = self.get(hostname, "TXT")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "DNS-over-HTTPS lookup failed",
                extra={"hostname": hostname, "error": str(e)},
            )
            return False

        for record in data.get("Answer", []):
            if (
                record.get("name", "").rstrip(".") == hostname
                and record.get("type") == TXT_RECORD_TYPE
                and record.get("data", "").strip('"') == digest
            ):
                logger.debug("Challenge record found", extra={"hostname": hostname})
                return True

        logger.debug("Challenge record not found", extra={"hostname": hostname})
        return False
