"""Certificate download and revocation (RFC 8555 Sections 7.4.2 and 7.6)."""

from typing import Any

from cryptography import x509

from acmekit._http import PEM_CHAIN_CONTENT_TYPE
from acmekit._logging import get_logger
from acmekit.crypto import PrivateKey, base64url_encode, certificate_to_der
from acmekit.models import RevocationReason
from acmekit.session import AcmeSession

logger = get_logger(__name__)


class CertificateClient:
    """Downloads issued chains and revokes certificates."""

    def __init__(self, session: AcmeSession):
        self._session = session

    def download(self, url: str) -> bytes:
        """Download a certificate chain.

        Args:
            url: The certificate URL from a valid order.

        Returns:
            The PEM chain exactly as delivered (leaf first).
        """
        response = self._session.post_as_get(url, accept=PEM_CHAIN_CONTENT_TYPE)
        logger.info(
            "Certificate downloaded",
            extra={"url": url, "size": len(response.content)},
        )
        return response.content

    def revoke(
        self,
        certificate: bytes | x509.Certificate,
        reason: RevocationReason | int | None = None,
        certificate_key: PrivateKey | None = None,
    ) -> None:
        """Revoke a certificate (RFC 8555 Section 7.6).

        Args:
            certificate: DER bytes or a certificate object.
            reason: Optional RFC 5280 reason code.
            certificate_key: Sign with the certificate's own key instead of
                the account key (proof of possession).

        Raises:
            ProblemError: E.g. ``AlreadyRevokedError`` if already revoked.
        """
        payload: dict[str, Any] = {"certificate": base64url_encode(certificate_to_der(certificate))}
        if reason is not None:
            payload["reason"] = int(reason)

        url = self._session.directory.revoke_cert
        self._session.post(url, payload, key=certificate_key)
        logger.info(
            "Certificate revoked",
            extra={
                "reason": payload.get("reason"),
                "signed_with": "certificate key" if certificate_key else "account key",
            },
        )
