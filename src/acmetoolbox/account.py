"""ACME account bootstrap and management."""

import json
from datetime import datetime
from typing import Any

from acmetoolbox._logging import get_logger
from acmetoolbox.connector import Connector
from acmetoolbox.crypto import generate_rsa_keys, get_jwk, load_private_key_pem
from acmetoolbox.exceptions import AccountDoesNotExistError, AcmeRuntimeError
from acmetoolbox.models import AccountResource, AccountStatus
from acmetoolbox.storage.base import CertificateStorage

logger = get_logger(__name__)


def _contacts(emails: list[str]) -> list[str]:
    return [email if email.startswith("mailto:") else f"mailto:{email}" for email in emails if email]


class Account:
    """The ACME account bound to the key pair in storage.

    Args:
        connector: Connector to the CA. Its account_url is set by bootstrap().
        storage: Storage holding (or receiving) the account key pair.
        key_size: RSA key size used when a new account key is generated.
    """

    def __init__(self, connector: Connector, storage: CertificateStorage, key_size: int = 4096):
        self.connector = connector
        self.storage = storage
        self.key_size = key_size

        self.id: int | str | None = None
        self.key: dict[str, Any] | None = None
        self.contact: list[str] = []
        self.agreement: str | None = None
        self.initial_ip: str | None = None
        self.created_at: datetime | None = None
        self.status: AccountStatus | None = None

    @property
    def url(self) -> str | None:
        return self.connector.account_url

    def bootstrap(self, emails: list[str]) -> None:
        """Create the account, or look up the one belonging to the stored key.

        Without a stored key pair, a new one is generated and an account
        registered with the given contacts. With one, the existing
        account is looked up. Either way the account data is then fetched.

        Raises:
            AcmeRuntimeError: If no account URL could be obtained.
        """
        if not self.storage.get_account_private_key() or not self.storage.get_account_public_key():
            logger.info("No account found, attempting to create account", extra={"contact": emails})
            keys = generate_rsa_keys(self.key_size)
            self.storage.set_account_private_key(keys.private_key)
            self.storage.set_account_public_key(keys.public_key)
            account_url = self._create(emails)
        else:
            account_url = self._lookup()

        if not account_url:
            raise AcmeRuntimeError("Account not found or deactivated.")

        self.connector.account_url = account_url
        self.fetch_data()

    def _create(self, emails: list[str]) -> str | None:
        new_account = self.connector.directory.new_account
        response = self.connector.post(
            new_account,
            self.connector.sign_jwk(
                {"contact": _contacts(emails), "termsOfServiceAgreed": True},
                new_account,
            ),
        )
        location = response.headers.get("Location")
        if response.status_code == 201 and location:
            logger.info("Account created", extra={"url": location})
            return location
        return None

    def _lookup(self) -> str | None:
        new_account = self.connector.directory.new_account
        try:
            response = self.connector.post(
                new_account,
                self.connector.sign_jwk({"onlyReturnExisting": True}, new_account),
            )
        except AccountDoesNotExistError as e:
            raise AcmeRuntimeError("Account not found or deactivated.") from e

        location = response.headers.get("Location")
        if response.status_code == 200 and location:
            return location
        return None

    def _adopt(self, data: AccountResource) -> None:
        self.id = data.id
        self.key = data.key
        self.contact = list(data.contact)
        self.agreement = data.agreement
        self.initial_ip = data.initial_ip
        self.created_at = data.created_at
        self.status = data.status

    def _parse(self, body: Any) -> AccountResource:
        try:
            return AccountResource.model_validate(body)
        except ValueError as e:
            raise AcmeRuntimeError(f"Malformed account data: {e}") from e

    def fetch_data(self) -> None:
        """Fetch the account resource with a POST-as-GET and adopt it.

        Raises:
            AcmeRuntimeError: If the account data cannot be fetched.
        """
        response = self.connector.get_as_post(self.connector.account_url)
        if response.status_code != 200:
            raise AcmeRuntimeError("Account data cannot be found.")
        self._adopt(self._parse(response.json()))

    def update_contact(self, emails: list[str]) -> bool:
        """Replace the account's contact addresses."""
        url = self.connector.account_url
        response = self.connector.post(url, self.connector.sign_kid({"contact": _contacts(emails)}, url, url))
        if response.status_code != 200:
            return False

        self._adopt(self._parse(response.json()))
        logger.info("Account data updated", extra={"url": url})
        return True

    def change_keys(self) -> bool:
        """Roll the account over to a newly generated key pair (RFC 8555 Section 7.3.5).

        The inner JWS is signed by the new key and the outer one by the
        current key. The new pair replaces the stored one only after the
        CA has confirmed the change.
        """
        url = self.connector.account_url
        key_change = self.connector.directory.key_change
        old_private = self.storage.get_account_private_key()
        if not old_private:
            raise AcmeRuntimeError("No account key available")

        keys = generate_rsa_keys(self.key_size)
        inner_payload = {
            "account": url,
            "newKey": get_jwk(load_private_key_pem(keys.private_key)),
            "oldKey": get_jwk(load_private_key_pem(old_private)),
        }
        inner = self.connector.sign_jwk(
            inner_payload,
            key_change,
            private_key_pem=keys.private_key,
            include_nonce=False,
        )
        response = self.connector.post(
            key_change,
            self.connector.sign_kid(json.loads(inner), url, key_change),
        )
        if response.status_code != 200:
            return False

        self.storage.set_account_private_key(keys.private_key)
        self.storage.set_account_public_key(keys.public_key)
        self.fetch_data()
        logger.info("Account keys changed", extra={"url": url})
        return True

    def deactivate(self) -> bool:
        """Deactivate the account. This is permanent; the connector refuses any later request."""
        url = self.connector.account_url
        response = self.connector.post(url, self.connector.sign_kid({"status": "deactivated"}, url, url))
        if response.status_code != 200:
            return False

        self.connector.account_deactivated = True
        self.status = AccountStatus.DEACTIVATED
        logger.info("Account deactivated", extra={"url": url})
        return True
