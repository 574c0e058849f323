"""Challenge proofs and the resolver interface callers implement."""

from abc import ABC, abstractmethod

from cryptography import x509
from pydantic import BaseModel, ConfigDict

from acmekit.challenges.dns01 import compute_dns_txt_value, dns_record_name
from acmekit.challenges.http01 import http_resource_path
from acmekit.challenges.tls_alpn01 import ALPN_PROTOCOL, compute_acme_identifier_extension
from acmekit.models import Challenge, ChallengeType, Identifier


def compute_key_authorization(token: str, thumbprint: str) -> str:
    """Key authorization shared by every challenge type (RFC 8555 Section 8.1).

    Args:
        token: Challenge token chosen by the CA.
        thumbprint: RFC 7638 thumbprint of the account key.

    Returns:
        ``token.thumbprint``
    """
    return f"{token}.{thumbprint}"


class ChallengeProof(BaseModel):
    """Everything a resolver needs to satisfy one challenge."""

    challenge: Challenge
    identifier: Identifier
    thumbprint: str
    """RFC 7638 thumbprint of the account key."""

    model_config = ConfigDict(frozen=True)

    @property
    def type(self) -> ChallengeType | str:
        return self.challenge.type

    @property
    def token(self) -> str:
        return self.challenge.token or ""

    @property
    def key_authorization(self) -> str:
        return compute_key_authorization(self.token, self.thumbprint)

    # http-01

    @property
    def http_path(self) -> str:
        """Path to serve, e.g. ``/.well-known/acme-challenge/<token>``."""
        return http_resource_path(self.token)

    @property
    def http_body(self) -> str:
        """Body to serve at :attr:`http_path`."""
        return self.key_authorization

    # dns-01

    @property
    def dns_name(self) -> str:
        """TXT record name, e.g. ``_acme-challenge.example.com``."""
        return dns_record_name(self.identifier.value)

    @property
    def dns_value(self) -> str:
        """TXT record value."""
        return compute_dns_txt_value(self.key_authorization)

    # tls-alpn-01

    @property
    def tls_alpn_protocol(self) -> str:
        """ALPN protocol the validation server must negotiate."""
        return ALPN_PROTOCOL

    @property
    def tls_alpn_extension(self) -> x509.UnrecognizedExtension:
        """acmeIdentifier extension for the validation certificate."""
        return compute_acme_identifier_extension(self.key_authorization)


class ChallengeResolver(ABC):
    """Makes challenge proofs visible to the CA.

    Implementations list the challenge types they handle, in order of
    preference, in ``supported_types``.
    """

    supported_types: tuple[ChallengeType, ...] = ()

    @abstractmethod
    def perform(self, proof: ChallengeProof) -> None:
        """Publish the proof.

        Must return only once the proof is externally visible (e.g. the DNS
        record has propagated), and raise if that cannot be achieved.

        Args:
            proof: The challenge proof to publish.
        """
        ...

    @abstractmethod
    def cleanup(self, proof: ChallengeProof) -> None:
        """Remove whatever perform() published.

        Called once the authorization settled, and on every failure path
        after perform() was attempted.

        Args:
            proof: The challenge proof to remove.
        """
        ...
