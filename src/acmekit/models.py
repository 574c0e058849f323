"""Pydantic models for ACME protocol resources."""

import base64
from datetime import datetime
from enum import IntEnum, StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

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
    REMOVE_FROM_CRL = 8
    PRIVILEGE_WITHDRAWN = 9
    AA_COMPROMISE = 10


class AcmeErrorType(StrEnum):
    """ACME error types (RFC 8555 Section 6.7)."""

    ACCOUNT_DOES_NOT_EXIST = "urn:ietf:params:acme:error:accountDoesNotExist"
    ALREADY_REVOKED = "urn:ietf:params:acme:error:alreadyRevoked"
    BAD_CSR = "urn:ietf:params:acme:error:badCSR"
    BAD_NONCE = "urn:ietf:params:acme:error:badNonce"
    BAD_PUBLIC_KEY = "urn:ietf:params:acme:error:badPublicKey"
    BAD_REVOCATION_REASON = "urn:ietf:params:acme:error:badRevocationReason"
    BAD_SIGNATURE_ALGORITHM = "urn:ietf:params:acme:error:badSignatureAlgorithm"
    CAA = "urn:ietf:params:acme:error:caa"
    COMPOUND = "urn:ietf:params:acme:error:compound"
    CONNECTION = "urn:ietf:params:acme:error:connection"
    DNS = "urn:ietf:params:acme:error:dns"
    EXTERNAL_ACCOUNT_REQUIRED = "urn:ietf:params:acme:error:externalAccountRequired"
    INCORRECT_RESPONSE = "urn:ietf:params:acme:error:incorrectResponse"
    INVALID_CONTACT = "urn:ietf:params:acme:error:invalidContact"
    MALFORMED = "urn:ietf:params:acme:error:malformed"
    ORDER_NOT_READY = "urn:ietf:params:acme:error:orderNotReady"
    RATE_LIMITED = "urn:ietf:params:acme:error:rateLimited"
    REJECTED_IDENTIFIER = "urn:ietf:params:acme:error:rejectedIdentifier"
    SERVER_INTERNAL = "urn:ietf:params:acme:error:serverInternal"
    TLS = "urn:ietf:params:acme:error:tls"
    UNAUTHORIZED = "urn:ietf:params:acme:error:unauthorized"
    UNSUPPORTED_CONTACT = "urn:ietf:params:acme:error:unsupportedContact"
    UNSUPPORTED_IDENTIFIER = "urn:ietf:params:acme:error:unsupportedIdentifier"
    USER_ACTION_REQUIRED = "urn:ietf:params:acme:error:userActionRequired"


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

    @property
    def is_terminal(self) -> bool:
        """True for states no transition leaves."""
        return self in (OrderStatus.VALID, OrderStatus.INVALID)

    def can_become(self, new: "OrderStatus") -> bool:
        """Whether an order in this state may next be observed in ``new``.

        Staying in the same state is always allowed. Terminal states never
        change, and non-terminal states only move forward.
        """
        if new == self:
            return True
        if self.is_terminal:
            return False
        return _ORDER_RANK[new] > _ORDER_RANK[self]


_ORDER_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.READY: 1,
    OrderStatus.PROCESSING: 2,
    OrderStatus.VALID: 3,
    OrderStatus.INVALID: 3,
}


class AccountStatus(StrEnum):
    """Account statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    VALID = "valid"
    DEACTIVATED = "deactivated"
    REVOKED = "revoked"


class ChallengeType(StrEnum):
    """Challenge types (RFC 8555 Section 8, RFC 8737)."""

    HTTP_01 = "http-01"
    DNS_01 = "dns-01"
    TLS_ALPN_01 = "tls-alpn-01"
    DNS_ACCOUNT_01 = "dns-account-01"


class IdentifierType(StrEnum):
    """Identifier types (RFC 8555 Section 9.7.7, RFC 8738)."""

    DNS = "dns"
    IP = "ip"


# =============================================================================
# Pydantic Models
# =============================================================================


class DirectoryMeta(BaseModel):
    """Metadata block of the directory (RFC 8555 Section 7.1.1)."""

    terms_of_service: str | None = Field(default=None, alias="termsOfService")
    website: str | None = None
    caa_identities: list[str] = Field(default_factory=list, alias="caaIdentities")
    external_account_required: bool = Field(default=False, alias="externalAccountRequired")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Directory(BaseModel):
    """ACME directory resource (RFC 8555 Section 7.1.1)."""

    new_nonce: str = Field(alias="newNonce")
    new_account: str = Field(alias="newAccount")
    new_order: str = Field(alias="newOrder")
    new_authz: str | None = Field(default=None, alias="newAuthz")
    revoke_cert: str = Field(alias="revokeCert")
    key_change: str = Field(alias="keyChange")
    meta: DirectoryMeta = Field(default_factory=DirectoryMeta)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def terms_of_service(self) -> str | None:
        return self.meta.terms_of_service

    @property
    def website(self) -> str | None:
        return self.meta.website

    @property
    def caa_identities(self) -> list[str]:
        return self.meta.caa_identities

    @property
    def external_account_required(self) -> bool:
        return self.meta.external_account_required


class Identifier(BaseModel):
    """ACME identifier (RFC 8555 Section 7.1.3)."""

    type: IdentifierType
    value: str

    model_config = ConfigDict(frozen=True)

    @classmethod
    def dns(cls, value: str) -> "Identifier":
        """Shortcut for a DNS identifier."""
        return cls(type=IdentifierType.DNS, value=value)


class Problem(BaseModel):
    """Problem document (RFC 7807, RFC 8555 Section 6.7)."""

    type: str = "about:blank"
    detail: str = ""
    status: int | None = None
    identifier: Identifier | None = None
    subproblems: list["Problem"] = Field(default_factory=list)


class ExternalAccountBinding(BaseModel):
    """External Account Binding credentials issued by the CA."""

    kid: str
    """Key identifier assigned by the CA."""
    hmac_key: bytes | str
    """MAC key, raw bytes or the base64url string the CA hands out."""

    def key_bytes(self) -> bytes:
        """Return the raw MAC key."""
        if isinstance(self.hmac_key, bytes):
            return self.hmac_key
        padded = self.hmac_key + "=" * (-len(self.hmac_key) % 4)
        return base64.urlsafe_b64decode(padded)


class Account(BaseModel):
    """ACME account resource (RFC 8555 Section 7.1.2)."""

    status: AccountStatus
    contact: list[str] = Field(default_factory=list)
    orders: str | None = None
    terms_of_service_agreed: bool | None = Field(default=None, alias="termsOfServiceAgreed")
    external_account_binding: dict[str, Any] | None = Field(
        default=None, alias="externalAccountBinding"
    )
    url: str | None = None
    """Account URL, taken from the Location header."""

    model_config = ConfigDict(populate_by_name=True)

    @property
    def key_identifier(self) -> str | None:
        """The ``kid`` used to sign requests on behalf of this account."""
        return self.url


class Challenge(BaseModel):
    """ACME challenge resource (RFC 8555 Section 7.5.1)."""

    type: ChallengeType | str = Field(union_mode="left_to_right")
    url: str
    status: ChallengeStatus
    token: str | None = None
    validated: datetime | None = None
    error: Problem | None = None


class Authorization(BaseModel):
    """ACME authorization resource (RFC 8555 Section 7.1.4)."""

    status: AuthorizationStatus
    identifier: Identifier
    challenges: list[Challenge] = Field(default_factory=list)
    expires: datetime | None = None
    wildcard: bool = False
    url: str | None = None
    """Authorization URL."""
    order_url: str | None = None
    """Order this authorization belongs to (``Link: rel="up"``), when sent."""

    def get_challenge(self, challenge_type: ChallengeType | str) -> Challenge | None:
        """Return the challenge of the given type, if offered."""
        for challenge in self.challenges:
            if challenge.type == challenge_type:
                return challenge
        return None


class Order(BaseModel):
    """ACME order resource (RFC 8555 Section 7.1.3)."""

    status: OrderStatus
    identifiers: list[Identifier]
    authorizations: list[str]
    finalize: str
    expires: datetime | None = None
    not_before: datetime | None = Field(default=None, alias="notBefore")
    not_after: datetime | None = Field(default=None, alias="notAfter")
    certificate: str | None = None
    error: Problem | None = None
    url: str | None = None
    """Order URL, taken from the Location header."""

    model_config = ConfigDict(populate_by_name=True)


class JwsEnvelope(BaseModel):
    """Flattened JWS JSON serialization (RFC 7515 Section 7.2.2)."""

    protected: str
    payload: str
    signature: str

    model_config = ConfigDict(frozen=True)


class CertificateResult(BaseModel):
    """Result of the full issuance flow."""

    order: Order
    authorizations: list[Authorization]
    certificate_chain: bytes | None = None
    """Chain exactly as delivered by the CA (leaf first), None if not issued."""

    @property
    def issued(self) -> bool:
        return self.certificate_chain is not None
