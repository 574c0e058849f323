"""TLS-ALPN-01 challenge values (RFC 8737)."""

import hashlib

from cryptography import x509

ALPN_PROTOCOL = "acme-tls/1"

# id-pe-acmeIdentifier
ACME_IDENTIFIER_OID = x509.ObjectIdentifier("1.3.6.1.5.5.7.1.31")


def compute_acme_identifier_digest(key_authorization: str) -> bytes:
    """SHA-256 digest of the key authorization."""
    return hashlib.sha256(key_authorization.encode()).digest()


def compute_acme_identifier_extension(key_authorization: str) -> x509.UnrecognizedExtension:
    """The critical acmeIdentifier extension for the self-signed validation certificate.

    The extension value is the DER encoding of an OCTET STRING holding the
    SHA-256 digest of the key authorization.
    """
    digest = compute_acme_identifier_digest(key_authorization)
    # OCTET STRING tag, length 32, digest
    der_value = b"\x04\x20" + digest
    return x509.UnrecognizedExtension(ACME_IDENTIFIER_OID, der_value)
