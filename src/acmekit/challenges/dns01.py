"""dns-01 proof values (RFC 8555 Section 8.4)."""

import hashlib

from acmekit.crypto import base64url_encode

DNS_LABEL = "_acme-challenge"


def compute_dns_txt_value(key_authorization: str) -> str:
    """TXT record value: unpadded base64url of SHA-256 over the key authorization."""
    return base64url_encode(hashlib.sha256(key_authorization.encode("utf-8")).digest())


def dns_record_name(domain: str) -> str:
    """Name of the TXT record to publish for ``domain``.

    Wildcard prefixes are dropped: ``*.example.com`` is validated at
    ``_acme-challenge.example.com``.
    """
    domain = domain.rstrip(".")
    if domain.startswith("*."):
        domain = domain[2:]
    return f"{DNS_LABEL}.{domain}"
