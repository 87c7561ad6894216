"""Exceptions raised by acmetoolbox."""

from collections.abc import Mapping
from typing import Any


class AcmeToolboxError(Exception):
    """Base class for every error raised by this package."""


class LogicError(AcmeToolboxError):
    """Caller misuse: bad arguments or an operation that is not permitted.

    These are programming errors and are never worth retrying.
    """


class AcmeRuntimeError(AcmeToolboxError, RuntimeError):
    """The CA, the network, or the data received could not be dealt with."""


class TransportError(AcmeRuntimeError):
    """The HTTP layer failed before a response was received."""


class PollingTimeoutError(AcmeRuntimeError):
    """A polling loop ran past the deadline given by the caller."""


class AcmeError(AcmeRuntimeError):
    """The CA answered with an error status.

    Represents errors returned by the ACME server in the standard
    problem document format (RFC 7807).
    """

    def __init__(
        self,
        type: str,
        detail: str,
        status_code: int,
        subproblems: list[dict[str, Any]] | None = None,
        retry_after: int | None = None,
    ):
        self.type = type
        self.detail = detail
        self.status_code = status_code
        self.subproblems = subproblems
        self.retry_after = retry_after
        super().__init__(f"{type}: {detail}")

    @classmethod
    def from_response(
        cls,
        data: dict[str, Any],
        status_code: int,
        headers: Mapping[str, str] | None = None,
    ) -> "AcmeError":
        """Create an AcmeError from a problem document.

        Routes to the appropriate subclass based on the problem type.

        Args:
            data: Parsed JSON error response.
            status_code: HTTP status code.
            headers: Response headers (for Retry-After extraction).

        Returns:
            AcmeError instance (or appropriate subclass).
        """
        retry_after = cls._parse_retry_after(headers.get("Retry-After")) if headers else None
        error_type = data.get("type", "unknown")

        kwargs: dict[str, Any] = {
            "type": error_type,
            "detail": data.get("detail", "Unknown error"),
            "status_code": status_code,
            "subproblems": data.get("subproblems"),
            "retry_after": retry_after,
        }

        error_class = _ERROR_TYPES.get(error_type, cls)
        return error_class(**kwargs)

    @staticmethod
    def _parse_retry_after(value: str | None) -> int | None:
        """Parse Retry-After header (seconds or HTTP-date).

        Args:
            value: Retry-After header value.

        Returns:
            Seconds to wait, or None if not parseable.
        """
        if not value:
            return None
        try:
            return int(value)
        except ValueError:
            from datetime import datetime, timezone
            from email.utils import parsedate_to_datetime

            try:
                dt = parsedate_to_datetime(value)
            except (TypeError, ValueError):
                return None
            return max(0, int((dt - datetime.now(timezone.utc)).total_seconds()))

    def get_retry_seconds(self, default: int = 3600) -> int:
        """Get retry delay, falling back to default."""
        return self.retry_after if self.retry_after is not None else default


class BadNonceError(AcmeError):
    """Bad nonce error (urn:ietf:params:acme:error:badNonce)."""


class UnauthorizedError(AcmeError):
    """Request not authorized (urn:ietf:params:acme:error:unauthorized)."""


class AccountDoesNotExistError(AcmeError):
    """No account for the key (urn:ietf:params:acme:error:accountDoesNotExist)."""


class ServerInternalError(AcmeError):
    """ACME server internal error (urn:ietf:params:acme:error:serverInternal)."""


class RateLimitError(AcmeError):
    """Rate limit exceeded (urn:ietf:params:acme:error:rateLimited)."""

    @property
    def rate_limit_type(self) -> str:
        """Parse specific rate limit type from detail message."""
        detail = self.detail.lower()
        if "exact set" in detail:
            return "duplicate_certificate"
        elif "too many certificates" in detail:
            return "certificates_per_domain"
        elif "too many new orders" in detail:
            return "orders_per_account"
        elif "failed authorizations" in detail:
            return "failed_authorizations"
        return "unknown"


_ERROR_TYPES: dict[str, type[AcmeError]] = {
    "urn:ietf:params:acme:error:badNonce": BadNonceError,
    "urn:ietf:params:acme:error:unauthorized": UnauthorizedError,
    "urn:ietf:params:acme:error:accountDoesNotExist": AccountDoesNotExistError,
    "urn:ietf:params:acme:error:serverInternal": ServerInternalError,
    "urn:ietf:params:acme:error:rateLimited": RateLimitError,
}
