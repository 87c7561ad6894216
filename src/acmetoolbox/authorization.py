"""Refreshable view of one ACME authorization."""

from datetime import datetime

from pydantic import ValidationError

from acmetoolbox._logging import get_logger
from acmetoolbox.connector import Connector
from acmetoolbox.exceptions import AcmeRuntimeError, LogicError
from acmetoolbox.models import AuthorizationResource, AuthorizationStatus, Challenge

logger = get_logger(__name__)


class Authorization:
    """Server state of one identifier's domain-control validation.

    The resource is fetched on construction. Each refresh replaces the
    whole snapshot; nothing is patched field by field.

    Raises:
        AcmeRuntimeError: If the authorization cannot be fetched on construction.
    """

    def __init__(self, connector: Connector, url: str):
        self.connector = connector
        self.url = url
        self.resource = self._fetch()

    def _fetch(self) -> AuthorizationResource:
        response = self.connector.get(self.url)
        if response.status_code != 200:
            raise AcmeRuntimeError(f"Cannot find authorization {self.url} ({response.status_code})")
        try:
            return AuthorizationResource.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise AcmeRuntimeError(f"Malformed authorization {self.url}: {e}") from e

    def refresh(self) -> bool:
        """Re-fetch the authorization. On failure, log and keep the previous snapshot."""
        try:
            self.resource = self._fetch()
        except AcmeRuntimeError as e:
            logger.error(
                "Failed to refresh authorization",
                extra={"url": self.url, "error": str(e)},
            )
            return False
        return True

    @property
    def identifier(self) -> str:
        return self.resource.identifier.value

    @property
    def name(self) -> str:
        """Identifier as it appears in the order, with ``*.`` for wildcards."""
        if self.resource.wildcard:
            return f"*.{self.identifier}"
        return self.identifier

    @property
    def status(self) -> AuthorizationStatus:
        return self.resource.status

    @property
    def expires(self) -> datetime | None:
        return self.resource.expires

    @property
    def challenges(self) -> list[Challenge]:
        return self.resource.challenges

    def matches(self, identifier: str) -> bool:
        """True if identifier names this authorization (``*.`` prefix for wildcards)."""
        return identifier == self.name

    def find_challenge(self, challenge_type: str) -> Challenge | None:
        for challenge in self.resource.challenges:
            if challenge.type == challenge_type:
                return challenge
        return None

    def get_challenge(self, challenge_type: str) -> Challenge:
        """Return the challenge of the given type.

        Raises:
            LogicError: If the authorization offers no such challenge.
        """
        challenge = self.find_challenge(challenge_type)
        if challenge is None:
            raise LogicError(
                f"No challenge found for type '{challenge_type}' and identifier '{self.identifier}'"
            )
        return challenge
