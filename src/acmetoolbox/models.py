"""Pydantic models for ACME protocol resources."""

from datetime import datetime
from enum import IntEnum, StrEnum
from typing import Any

from pydantic import BaseModel, Field

# =============================================================================
# ACME Protocol Enums (RFC 8555)
# =============================================================================


class RevocationReason(IntEnum):
    """Certificate revocation reasons (RFC 5280 Section 5.3.1)."""

    UNSPECIFIED = 0
    KEY_COMPROMISE = 1
    CA_COMPROMISE = 2
    AFFILIATION_CHANGED = 3
    SUPERSEDED = 4
    CESSATION_OF_OPERATION = 5
    CERTIFICATE_HOLD = 6


class ChallengeStatus(StrEnum):
    """Challenge statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class AuthorizationStatus(StrEnum):
    """Authorization statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


class OrderStatus(StrEnum):
    """Order statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class AccountStatus(StrEnum):
    """Account statuses (RFC 8555 Section 7.1.6)."""

    VALID = "valid"
    DEACTIVATED = "deactivated"
    REVOKED = "revoked"


class ChallengeType(StrEnum):
    """Challenge types this client can complete."""

    HTTP_01 = "http-01"
    DNS_01 = "dns-01"


class IdentifierType(StrEnum):
    """Identifier types (RFC 8555 Section 9.7.7)."""

    DNS = "dns"


# =============================================================================
# Pydantic Models
# =============================================================================


class Directory(BaseModel):
    """ACME directory resource (RFC 8555 Section 7.1.1)."""

    new_nonce: str = Field(alias="newNonce")
    new_account: str = Field(alias="newAccount")
    new_order: str = Field(alias="newOrder")
    revoke_cert: str = Field(alias="revokeCert")
    key_change: str = Field(alias="keyChange")
    meta: dict[str, Any] | None = None

    model_config = {"populate_by_name": True}


class AccountResource(BaseModel):
    """ACME account resource as returned by the account URL."""

    status: AccountStatus
    id: int | str | None = None
    key: dict[str, Any] | None = None
    contact: list[str] = Field(default_factory=list)
    agreement: str | None = None
    initial_ip: str | None = Field(default=None, alias="initialIp")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    orders: str | None = None

    model_config = {"populate_by_name": True}


class Identifier(BaseModel):
    """ACME identifier (RFC 8555 Section 7.1.3)."""

    type: IdentifierType = IdentifierType.DNS
    value: str


class Challenge(BaseModel):
    """ACME challenge resource (RFC 8555 Section 7.5.1)."""

    type: str
    url: str
    status: ChallengeStatus
    token: str | None = None
    validated: datetime | None = None
    validation_record: list[dict[str, Any]] | None = Field(default=None, alias="validationRecord")
    error: dict[str, Any] | None = None

    model_config = {"populate_by_name": True}


class AuthorizationResource(BaseModel):
    """ACME authorization resource (RFC 8555 Section 7.1.4)."""

    identifier: Identifier
    status: AuthorizationStatus
    challenges: list[Challenge]
    expires: datetime | None = None
    wildcard: bool | None = None


class OrderResource(BaseModel):
    """ACME order resource (RFC 8555 Section 7.1.3)."""

    status: OrderStatus
    identifiers: list[Identifier]
    authorizations: list[str]
    finalize: str
    expires: datetime | None = None
    not_before: datetime | None = Field(default=None, alias="notBefore")
    not_after: datetime | None = Field(default=None, alias="notAfter")
    certificate: str | None = None
    error: dict[str, Any] | None = None

    model_config = {"populate_by_name": True}


class PendingAuthorization(BaseModel):
    """What has to be published to satisfy one pending challenge.

    For http-01, serve ``content`` at ``/.well-known/acme-challenge/{filename}``.
    For dns-01, publish ``dns_digest`` as a TXT record at ``_acme-challenge.{identifier}``.
    """

    type: ChallengeType
    identifier: str
    filename: str | None = None
    content: str | None = None
    dns_digest: str | None = None


class KeyPair(BaseModel):
    """PEM-encoded public/private key pair."""

    public_key: str
    private_key: str
