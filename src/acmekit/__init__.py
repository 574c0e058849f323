"""acmekit - ACME (RFC 8555) client library for automated certificate issuance."""

from acmekit._version import __version__
from acmekit.challenges import ChallengeProof, ChallengeResolver
from acmekit.client import AcmeClient
from acmekit.directory import LETS_ENCRYPT_DIRECTORY, LETS_ENCRYPT_STAGING_DIRECTORY
from acmekit.exceptions import (
    AcmeError,
    AcmeTimeoutError,
    PollCancelledError,
    ProblemError,
    ProtocolError,
    SigningError,
    TransportError,
    ValidationError,
)
from acmekit.models import (
    ChallengeType,
    ExternalAccountBinding,
    Identifier,
    RevocationReason,
)

__all__ = [
    "AcmeClient",
    "AcmeError",
    "AcmeTimeoutError",
    "ChallengeProof",
    "ChallengeResolver",
    "ChallengeType",
    "ExternalAccountBinding",
    "Identifier",
    "LETS_ENCRYPT_DIRECTORY",
    "LETS_ENCRYPT_STAGING_DIRECTORY",
    "PollCancelledError",
    "ProblemError",
    "ProtocolError",
    "RevocationReason",
    "SigningError",
    "TransportError",
    "ValidationError",
    "__version__",
]
