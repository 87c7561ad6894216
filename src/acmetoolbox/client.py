"""ACME client facade wiring connector, account and orders together."""

import httpx

from acmetoolbox._logging import get_logger
from acmetoolbox.account import Account
from acmetoolbox.connector import Connector
from acmetoolbox.order import Order
from acmetoolbox.storage.base import CertificateStorage
from acmetoolbox.storage.filesystem import FilesystemCertificateStorage
from acmetoolbox.validators.base import DnsValidator
from acmetoolbox.validators.doh import DnsOverHttpsValidator
from acmetoolbox.waiting import Sleeper, SystemSleeper

logger = get_logger(__name__)


class AcmeClient:
    """ACME client for automated SSL/TLS certificate management.

    Holds the collaborators and creates the connector and account on
    first use; all protocol logic lives in Connector, Account and Order.

    Usage:
        with AcmeClient(["admin@example.org"], staging=True) as client:
            order = client.get_or_create_order("example.org", ["example.org", "www.example.org"])
            for pending in order.pending_authorizations("dns-01"):
                publish(pending.identifier, pending.dns_digest)
                order.verify(pending.identifier, "dns-01")
            if order.all_authorizations_valid() and order.finalize():
                order.fetch_certificate()

    Args:
        emails: Contact addresses for the account.
        base_url: CA base URL. Overrides ``staging`` when given.
        staging: Use Let's Encrypt staging (True) or production (False).
        storage: Key and certificate storage (default: ./certificates on disk).
        dns_validator: DNS-01 self-check (default: DNS over HTTPS).
        sleeper: Wait primitive for polling (default: time.sleep).
        http_client: Optional httpx client for talking to the CA.
        account_key_size: RSA size for a newly generated account key.
    """

    LE_PRODUCTION = "https://acme-v02.api.letsencrypt.org"
    LE_STAGING = "https://acme-staging-v02.api.letsencrypt.org"

    def __init__(
        self,
        emails: list[str],
        base_url: str | None = None,
        staging: bool = True,
        storage: CertificateStorage | None = None,
        dns_validator: DnsValidator | None = None,
        sleeper: Sleeper | None = None,
        http_client: httpx.Client | None = None,
        account_key_size: int = 4096,
    ):
        self.emails = emails
        self.base_url = base_url or (self.LE_STAGING if staging else self.LE_PRODUCTION)
        self.storage = storage or FilesystemCertificateStorage()
        self._owns_dns_validator = dns_validator is None
        self.dns_validator = dns_validator or DnsOverHttpsValidator()
        self.sleeper = sleeper or SystemSleeper()
        self.account_key_size = account_key_size
        self._http_client = http_client

        self._connector: Connector | None = None
        self._account: Account | None = None

    def close(self) -> None:
        """Close the HTTP clients this client created."""
        if self._connector is not None:
            self._connector.close()
        if self._owns_dns_validator:
            self.dns_validator.close()

    def __enter__(self) -> "AcmeClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _bootstrap(self) -> None:
        connector = Connector(self.base_url, self.storage, http_client=self._http_client)
        account = Account(connector, self.storage, key_size=self.account_key_size)
        try:
            account.bootstrap(self.emails)
        except BaseException:
            connector.close()
            raise
        self._connector, self._account = connector, account

    @property
    def connector(self) -> Connector:
        """The connector, with the account bootstrapped on first access."""
        if self._connector is None:
            self._bootstrap()
        return self._connector

    def get_account(self) -> Account:
        if self._account is None:
            self._bootstrap()
        return self._account

    def get_or_create_order(
        self,
        basename: str,
        domains: list[str],
        key_type: str = Order.DEFAULT_KEY_TYPE,
        not_before: str = "",
        not_after: str = "",
    ) -> Order:
        """Resume the stored order for basename, or create one for domains.

        See Order.load_or_create for the arguments.
        """
        logger.info("Get or create order", extra={"basename": basename, "domains": domains})

        order = Order(self.connector, self.storage, self.dns_validator, self.sleeper)
        order.load_or_create(basename, domains, key_type, not_before, not_after)
        return order
