"""ACME order state machine: creation, validation, finalization, issuance, revocation."""

import re
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx
from cryptography.hazmat.primitives import serialization

from acmetoolbox._logging import get_logger
from acmetoolbox.authorization import Authorization
from acmetoolbox.challenges import compute_dns_txt_value, compute_key_authorization
from acmetoolbox.connector import Connector
from acmetoolbox.crypto import (
    base64url_encode,
    create_csr,
    generate_ec_keys,
    generate_rsa_keys,
    key_thumbprint,
    load_private_key_pem,
    pem_to_der,
)
from acmetoolbox.exceptions import AcmeError, AcmeRuntimeError, LogicError, PollingTimeoutError
from acmetoolbox.models import (
    AuthorizationStatus,
    ChallengeStatus,
    ChallengeType,
    OrderResource,
    OrderStatus,
    PendingAuthorization,
)
from acmetoolbox.storage.base import CertificateStorage
from acmetoolbox.validators.base import DnsValidator
from acmetoolbox.waiting import Sleeper

logger = get_logger(__name__)

_KEY_TYPE = re.compile(r"^(rsa|ec)-(\d{3,4})$")
_ACME_DATE = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z")
_CERTIFICATE_BLOCK = re.compile(r"-----BEGIN CERTIFICATE-----[\s\S]+?-----END CERTIFICATE-----", re.IGNORECASE)


def parse_key_type(key_type: str) -> tuple[str, int]:
    """Split a key type specifier into algorithm and size.

    ``rsa`` and ``ec`` select RSA-4096 and P-256; ``rsa-2048`` or
    ``ec-384`` pick an explicit size.

    Raises:
        LogicError: If the specifier or size is not supported.
    """
    if key_type == "rsa":
        return "rsa", 4096
    if key_type == "ec":
        return "ec", 256

    match = _KEY_TYPE.match(key_type)
    if not match:
        raise LogicError(f"Key type '{key_type}' not supported.")

    algorithm, size = match.group(1), int(match.group(2))
    if algorithm == "rsa" and not 2048 <= size <= 4096:
        raise LogicError(f"RSA key size {size} not supported; use 2048 to 4096.")
    if algorithm == "ec" and size not in (256, 384):
        raise LogicError(f"EC key size {size} not supported; use 256 or 384.")
    return algorithm, size


def _is_valid_url(url: str) -> bool:
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError):
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.host)


class Order:
    """One certificate order and the authorizations it owns.

    The order is identified by a basename: its URL is kept in storage
    metadata under ``{basename}.order`` and the certificate key pair,
    certificate and full chain are stored under the basename itself, so
    a later run resumes the same order.

    Args:
        connector: Connector with a bootstrapped account.
        storage: Storage for keys, certificates and the order URL.
        dns_validator: Self-check used before asking the CA to validate dns-01.
        sleeper: Wait primitive used between polls.
        clock: Monotonic clock used for polling deadlines.
    """

    VERIFY_POLL_INTERVAL = 1  # seconds
    CERTIFICATE_POLL_INTERVAL = 5  # seconds
    CERTIFICATE_POLL_ATTEMPTS = 4
    DEFAULT_KEY_TYPE = "rsa-4096"

    def __init__(
        self,
        connector: Connector,
        storage: CertificateStorage,
        dns_validator: DnsValidator,
        sleeper: Sleeper,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.connector = connector
        self.storage = storage
        self.dns_validator = dns_validator
        self.sleeper = sleeper
        self._clock = clock

        self.basename: str = ""
        self.key_type: str = "rsa"
        self.key_size: int = 4096
        self.url: str | None = None

        self.status: OrderStatus | None = None
        self.expires: datetime | None = None
        self.identifiers: list[str] = []
        self.authorization_urls: list[str] = []
        self.finalize_url: str | None = None
        self.certificate_url: str | None = None
        self.authorizations: list[Authorization] = []

    @property
    def _order_key(self) -> str:
        return f"{self.basename}.order"

    # -------------------------------------------------------------------------
    # Loading and creation
    # -------------------------------------------------------------------------

    def load_or_create(
        self,
        basename: str,
        domains: list[str],
        key_type: str = DEFAULT_KEY_TYPE,
        not_before: str = "",
        not_after: str = "",
    ) -> None:
        """Resume the stored order for basename, or create a new one.

        A stored order is reused only if its URL is valid, it can be
        fetched, it is not invalid and it covers exactly the given
        domains. Otherwise it is discarded and a new order is created.

        Args:
            basename: Storage name for this certificate.
            domains: Identifiers to order; may include ``*.`` wildcards.
            key_type: ``rsa``, ``ec``, ``rsa-<2048..4096>``, ``ec-256`` or ``ec-384``.
            not_before: Empty, or a date like ``2026-01-01T00:00:00Z``.
            not_after: Empty, or a date like ``2026-01-01T00:00:00Z``.

        Raises:
            LogicError: On a bad key type, date or wildcard, before any request is made.
            AcmeRuntimeError: If the CA does not create the order.
        """
        self.key_type, self.key_size = parse_key_type(key_type)
        for value in (not_before, not_after):
            if value and not _ACME_DATE.fullmatch(value):
                raise LogicError(
                    "notBefore and notAfter fields must be empty "
                    "or be a string similar to 0000-00-00T00:00:00Z"
                )
        for domain in domains:
            if domain.count("*.") > 1:
                raise LogicError("Cannot create orders with multiple wildcards in one domain.")

        self.basename = basename

        if self._load_existing(domains):
            self.refresh_authorizations()
        else:
            self._create(domains, not_before, not_after)

    def _load_existing(self, domains: list[str]) -> bool:
        order_url = self.storage.get_metadata(self._order_key)
        if (
            not order_url
            or not self.storage.get_private_key(self.basename)
            or not self.storage.get_public_key(self.basename)
        ):
            logger.info("No order found, creating new order", extra={"basename": self.basename})
            return False

        if not _is_valid_url(order_url):
            logger.warning("Stored order has invalid URL, creating new order", extra={"basename": self.basename})
            self._discard()
            return False

        try:
            response = self.connector.get(order_url)
            order = OrderResource.model_validate(response.json())
        except (AcmeRuntimeError, ValueError) as e:
            logger.warning(
                "Stored order could not be loaded, creating new order",
                extra={"basename": self.basename, "error": str(e)},
            )
            self._discard()
            return False

        if response.status_code != 200 or order.status == OrderStatus.INVALID:
            logger.warning("Stored order invalid, creating new order", extra={"basename": self.basename})
            self._discard()
            return False

        if {identifier.value for identifier in order.identifiers} != set(domains):
            logger.warning(
                "Domains do not match stored order, creating new order",
                extra={"basename": self.basename},
            )
            self._discard()
            return False

        self.url = order_url
        self._adopt(order)
        logger.debug("Loaded stored order", extra={"basename": self.basename, "url": order_url})
        return True

    def _discard(self) -> None:
        self.storage.set_metadata(self._order_key, None)
        self.storage.set_private_key(self.basename, None)
        self.storage.set_public_key(self.basename, None)
        self.url = None

    def _create(self, domains: list[str], not_before: str, not_after: str) -> None:
        payload: dict[str, Any] = {"identifiers": [{"type": "dns", "value": domain} for domain in domains]}
        if not_before:
            payload["notBefore"] = not_before
        if not_after:
            payload["notAfter"] = not_after

        new_order = self.connector.directory.new_order
        response = self.connector.post(
            new_order,
            self.connector.sign_kid(payload, self.connector.account_url, new_order),
        )

        location = response.headers.get("Location")
        if response.status_code != 201 or not location:
            raise AcmeRuntimeError(f"Creating new order failed ({response.status_code})")

        try:
            order = OrderResource.model_validate(response.json())
        except ValueError as e:
            raise AcmeRuntimeError(f"New-order returned invalid response: {e}") from e

        self.url = location
        self.storage.set_metadata(self._order_key, location)

        if self.key_type == "rsa":
            keys = generate_rsa_keys(self.key_size)
        else:
            keys = generate_ec_keys(self.key_size)
        self.storage.set_private_key(self.basename, keys.private_key)
        self.storage.set_public_key(self.basename, keys.public_key)

        self._adopt(order)
        self.refresh_authorizations()
        logger.info("Created order", extra={"basename": self.basename, "url": location})

    def _adopt(self, order: OrderResource) -> None:
        self.status = order.status
        self.expires = order.expires
        self.identifiers = [identifier.value for identifier in order.identifiers]
        self.authorization_urls = list(order.authorizations)
        self.finalize_url = order.finalize
        self.certificate_url = order.certificate

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    def refresh(self) -> bool:
        """Re-fetch the order and its authorizations.

        On failure the previous state is kept and False returned.
        """
        if not self.url:
            return False

        try:
            response = self.connector.get(self.url)
            order = OrderResource.model_validate(response.json())
        except (AcmeRuntimeError, ValueError) as e:
            logger.error("Failed to fetch order", extra={"basename": self.basename, "error": str(e)})
            return False

        if response.status_code != 200:
            logger.error(
                "Failed to fetch order",
                extra={"basename": self.basename, "status_code": response.status_code},
            )
            return False

        self._adopt(order)
        self.refresh_authorizations()
        return True

    def refresh_authorizations(self) -> None:
        """Rebuild the authorization list from the current authorization URLs."""
        authorizations = []
        for url in self.authorization_urls:
            if not _is_valid_url(url):
                continue
            try:
                authorizations.append(Authorization(self.connector, url))
            except AcmeRuntimeError as e:
                logger.warning("Skipping authorization", extra={"url": url, "error": str(e)})
        self.authorizations = authorizations

    def all_authorizations_valid(self) -> bool:
        """True if there is at least one authorization and all of them are valid."""
        if not self.authorizations:
            return False
        return all(auth.status == AuthorizationStatus.VALID for auth in self.authorizations)

    # -------------------------------------------------------------------------
    # Challenges
    # -------------------------------------------------------------------------

    def _key_authorization(self, token: str) -> str:
        account_key = self.storage.get_account_private_key()
        if not account_key:
            raise AcmeRuntimeError("No account key available")
        return compute_key_authorization(token, key_thumbprint(load_private_key_pem(account_key)))

    @staticmethod
    def _challenge_type(challenge_type: str) -> ChallengeType:
        try:
            return ChallengeType(challenge_type.lower())
        except ValueError:
            raise LogicError(f"Challenge type '{challenge_type}' not supported.") from None

    def pending_authorizations(self, challenge_type: str) -> list[PendingAuthorization]:
        """List what must be published for every pending challenge of the given type.

        For http-01 each entry carries the file name and content to serve;
        for dns-01 it carries the TXT record digest.

        Raises:
            LogicError: If the challenge type is not supported.
        """
        kind = self._challenge_type(challenge_type)

        pending = []
        for auth in self.authorizations:
            if auth.status != AuthorizationStatus.PENDING:
                continue
            challenge = auth.find_challenge(kind)
            if challenge is None or challenge.status != ChallengeStatus.PENDING or not challenge.token:
                continue

            key_authorization = self._key_authorization(challenge.token)
            if kind == ChallengeType.HTTP_01:
                pending.append(
                    PendingAuthorization(
                        type=kind,
                        identifier=auth.name,
                        filename=challenge.token,
                        content=key_authorization,
                    )
                )
            else:
                pending.append(
                    PendingAuthorization(
                        type=kind,
                        identifier=auth.name,
                        dns_digest=compute_dns_txt_value(key_authorization),
                    )
                )
        return pending

    def _deadline(self, timeout: float | None) -> float | None:
        return None if timeout is None else self._clock() + timeout

    def _check_deadline(self, deadline: float | None, what: str) -> None:
        if deadline is not None and self._clock() >= deadline:
            raise PollingTimeoutError(f"Timed out waiting for {what}")

    def verify(self, identifier: str, challenge_type: str, timeout: float | None = None) -> bool:
        """Self-check a challenge, ask the CA to validate it and wait for the result.

        Args:
            identifier: Order identifier (``*.`` prefix for wildcards).
            challenge_type: ``http-01`` or ``dns-01``.
            timeout: Optional limit in seconds on waiting for the CA.

        Returns:
            True once the authorization is valid. False if the self-check
            fails, the CA refuses the challenge or validation fails.

        Raises:
            LogicError: If the identifier is not part of this order.
            PollingTimeoutError: If timeout expires while the CA is still validating.
        """
        kind = self._challenge_type(challenge_type)
        auth = next((a for a in self.authorizations if a.matches(identifier)), None)
        if auth is None:
            raise LogicError(f"No authorization for '{identifier}' in this order.")

        if auth.status == AuthorizationStatus.VALID:
            return True
        if auth.status != AuthorizationStatus.PENDING:
            logger.warning(
                "Authorization not pending",
                extra={"identifier": identifier, "status": str(auth.status)},
            )
            return False

        challenge = auth.get_challenge(kind)
        if challenge.status != ChallengeStatus.PENDING or not challenge.token:
            logger.warning(
                "Challenge not pending",
                extra={"identifier": identifier, "challenge_type": str(kind)},
            )
            return False

        key_authorization = self._key_authorization(challenge.token)
        if kind == ChallengeType.DNS_01:
            published = self.dns_validator.check_challenge(identifier, compute_dns_txt_value(key_authorization))
        else:
            published = self.connector.check_http_challenge(identifier, challenge.token, key_authorization)
        if not published:
            logger.warning(
                "Challenge tested, found invalid",
                extra={"identifier": identifier, "challenge_type": str(kind)},
            )
            return False

        try:
            response = self.connector.post(
                challenge.url,
                self.connector.sign_kid(
                    {"keyAuthorization": key_authorization},
                    self.connector.account_url,
                    challenge.url,
                ),
            )
        except AcmeError as e:
            logger.warning(
                "Challenge valid, but failed to post to ACME service",
                extra={"identifier": identifier, "error": str(e)},
            )
            return False
        if response.status_code != 200:
            logger.warning(
                "Challenge valid, but failed to post to ACME service",
                extra={"identifier": identifier, "status_code": response.status_code},
            )
            return False

        deadline = self._deadline(timeout)
        while auth.status == AuthorizationStatus.PENDING:
            self._check_deadline(deadline, f"validation of {identifier}")
            logger.info(
                "Challenge valid, waiting for confirmation",
                extra={"identifier": identifier, "challenge_type": str(kind)},
            )
            self.sleeper.wait(self.VERIFY_POLL_INTERVAL)
            auth.refresh()

        if auth.status != AuthorizationStatus.VALID:
            logger.warning(
                "Challenge rejected by ACME service",
                extra={"identifier": identifier, "status": str(auth.status)},
            )
            return False

        logger.info("Challenge validated", extra={"identifier": identifier, "challenge_type": str(kind)})
        return True

    def deactivate_authorization(self, identifier: str) -> bool:
        """Deactivate the authorization for identifier so it can no longer be used."""
        for auth in self.authorizations:
            if not auth.matches(identifier):
                continue
            try:
                response = self.connector.post(
                    auth.url,
                    self.connector.sign_kid({"status": "deactivated"}, self.connector.account_url, auth.url),
                )
            except AcmeError as e:
                logger.warning(
                    "Failed to deactivate authorization",
                    extra={"identifier": identifier, "error": str(e)},
                )
                return False
            if response.status_code == 200:
                logger.info("Authorization deactivated", extra={"identifier": identifier})
                self.refresh_authorizations()
                return True

        logger.warning("No authorization found, cannot deactivate", extra={"identifier": identifier})
        return False

    # -------------------------------------------------------------------------
    # Finalization and certificates
    # -------------------------------------------------------------------------

    def _common_name(self) -> str:
        if self.basename in self.identifiers:
            return self.basename
        if f"*.{self.basename}" in self.identifiers:
            return f"*.{self.basename}"
        return self.identifiers[0]

    def generate_csr(self) -> str:
        """Build a PEM CSR for the order's identifiers, signed by the certificate key."""
        private_key = self.storage.get_private_key(self.basename)
        if not private_key:
            raise AcmeRuntimeError(f"No certificate key stored for '{self.basename}'")

        csr = create_csr(load_private_key_pem(private_key), self._common_name(), self.identifiers)
        return csr.public_bytes(serialization.Encoding.PEM).decode()

    def finalize(self, csr: str = "") -> bool:
        """Submit a CSR once every authorization is valid.

        Args:
            csr: PEM CSR to submit; one is generated when empty.

        Returns:
            True if the CA accepted the CSR.
        """
        if self.status not in (OrderStatus.PENDING, OrderStatus.READY):
            logger.warning(
                "Cannot finalize order in this status",
                extra={"basename": self.basename, "status": str(self.status)},
            )
            return False

        if not self.all_authorizations_valid():
            logger.warning("Not all authorizations are valid, cannot finalize order", extra={"basename": self.basename})
            return False

        if not csr:
            csr = self.generate_csr()
        payload = {"csr": base64url_encode(pem_to_der(csr))}

        try:
            response = self.connector.post(
                self.finalize_url,
                self.connector.sign_kid(payload, self.connector.account_url, self.finalize_url),
            )
            order = OrderResource.model_validate(response.json())
        except (AcmeError, ValueError) as e:
            logger.warning("Finalize request failed", extra={"basename": self.basename, "error": str(e)})
            return False

        if response.status_code != 200:
            logger.warning(
                "Finalize request failed",
                extra={"basename": self.basename, "status_code": response.status_code},
            )
            return False

        self._adopt(order)
        self.refresh_authorizations()
        logger.info("Order finalized", extra={"basename": self.basename, "status": str(self.status)})
        return True

    def is_finalized(self) -> bool:
        return self.status in (OrderStatus.PROCESSING, OrderStatus.VALID)

    def fetch_certificate(self, timeout: float | None = None) -> bool:
        """Wait for issuance, then download and store the certificate.

        While the order is processing it is re-fetched up to
        CERTIFICATE_POLL_ATTEMPTS times. The leaf is stored with
        set_certificate; if the CA returned a chain, leaf plus
        intermediates are also stored with set_full_chain_certificate.

        Returns:
            True if a certificate was stored.

        Raises:
            PollingTimeoutError: If timeout expires while the order is processing.
        """
        deadline = self._deadline(timeout)
        attempts = 0
        while self.status == OrderStatus.PROCESSING and attempts < self.CERTIFICATE_POLL_ATTEMPTS:
            self._check_deadline(deadline, f"issuance of {self.basename}")
            logger.info("Certificate being processed, retrying", extra={"basename": self.basename})
            self.sleeper.wait(self.CERTIFICATE_POLL_INTERVAL)
            self.refresh()
            attempts += 1

        if self.status != OrderStatus.VALID or not self.certificate_url:
            logger.warning("Order not valid, cannot retrieve certificate", extra={"basename": self.basename})
            return False

        try:
            response = self.connector.get(self.certificate_url)
        except AcmeError as e:
            logger.warning("Certificate request failed", extra={"basename": self.basename, "error": str(e)})
            return False
        if response.status_code != 200:
            logger.warning(
                "Certificate request failed",
                extra={"basename": self.basename, "status_code": response.status_code},
            )
            return False

        return self._store_certificates(response.text)

    def _store_certificates(self, body: str) -> bool:
        blocks = _CERTIFICATE_BLOCK.findall(body)
        if not blocks:
            logger.warning("Received invalid certificate, cannot save it", extra={"basename": self.basename})
            return False

        self.storage.set_certificate(self.basename, blocks[0])
        if len(blocks) > 1:
            self.storage.set_full_chain_certificate(self.basename, "".join(f"{block}\n" for block in blocks))

        logger.info("Certificate saved", extra={"basename": self.basename, "chain_length": len(blocks)})
        return True

    def revoke(self, reason: int = 0) -> bool:
        """Revoke the stored certificate, signing with the certificate's own key.

        Args:
            reason: RFC 5280 revocation reason code (see RevocationReason).

        Returns:
            True on success; False, without contacting the CA, if the order
            is not valid or no certificate and key are stored.

        Raises:
            AcmeRuntimeError: If the CA does not accept the revocation.
        """
        if self.status != OrderStatus.VALID:
            logger.warning("Order not valid, cannot revoke certificate", extra={"basename": self.basename})
            return False

        certificate = self.storage.get_certificate(self.basename)
        private_key = self.storage.get_private_key(self.basename)
        if not certificate or not private_key:
            logger.warning("No certificate stored, cannot revoke", extra={"basename": self.basename})
            return False

        payload = {"certificate": base64url_encode(pem_to_der(certificate)), "reason": int(reason)}
        revoke_url = self.connector.directory.revoke_cert
        response = self.connector.post(
            revoke_url,
            self.connector.sign_jwk(payload, revoke_url, private_key_pem=private_key),
        )
        if response.status_code != 200:
            raise AcmeRuntimeError(f"Certificate revocation failed ({response.status_code})")

        logger.info("Certificate revoked", extra={"basename": self.basename, "reason": int(reason)})
        return True
