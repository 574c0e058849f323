"""ACME client for certificate management."""

import contextvars
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

import httpx
from cryptography import x509

from acmekit._logging import get_logger, reset_identifiers, set_identifiers
from acmekit.account import AccountManager
from acmekit.authorization import AuthorizationPoller
from acmekit.certificate import CertificateClient
from acmekit.challenges.base import ChallengeResolver
from acmekit.crypto import PrivateKey
from acmekit.directory import LETS_ENCRYPT_STAGING_DIRECTORY
from acmekit.models import (
    Authorization,
    AuthorizationStatus,
    CertificateResult,
    Directory,
    Identifier,
    Order,
    OrderStatus,
)
from acmekit.order import OrderClient
from acmekit.session import AcmeSession

logger = get_logger(__name__)


class AcmeClient:
    """ACME client for automated SSL/TLS certificate management.

    This client implements RFC 8555 (ACME) for obtaining certificates
    from an ACME-compliant certificate authority. The protocol steps are
    available through the ``accounts``, ``orders``, ``authorizations`` and
    ``certificates`` attributes; :meth:`obtain_certificate` runs the whole
    issuance flow.

    Args:
        directory_url: URL of the ACME directory endpoint.
        account_key: Private key for the ACME account.
        account_url: URL of an existing account for this key, if known.
        ca_cert: Path to CA certificate file, False to disable verification,
                 or None/True for default verification.
        http_client: Client to use instead of creating one. It is not
                 closed by :meth:`close`.
        timeout: Per-request timeout in seconds for a created client.
    """

    # Polling configuration
    POLL_INTERVAL = 1.0  # seconds, first backoff delay
    MAX_POLL_INTERVAL = 30.0  # seconds
    MAX_POLL_ATTEMPTS = 30

    def __init__(
        self,
        directory_url: str = LETS_ENCRYPT_STAGING_DIRECTORY,
        *,
        account_key: PrivateKey,
        account_url: str | None = None,
        ca_cert: str | bool | None = None,
        http_client: httpx.Client | None = None,
        timeout: float = 30.0,
    ):
        self.directory_url = directory_url

        if http_client is None:
            # ca_cert can be: path (str), False (disable), None/True (default)
            verify = True if ca_cert is None else ca_cert
            self._http = httpx.Client(verify=verify, timeout=timeout)
            self._owns_http = True
        else:
            self._http = http_client
            self._owns_http = False

        self.session = AcmeSession(self._http, directory_url, account_key, account_url)
        self.accounts = AccountManager(self.session)
        self.certificates = CertificateClient(self.session)
        self.orders = OrderClient(self.session, self.certificates)
        self.authorizations = AuthorizationPoller(self.session)

    def close(self) -> None:
        """Close the HTTP client, if this client created it."""
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "AcmeClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    @property
    def directory(self) -> Directory:
        """Get the ACME directory (cached after first fetch)."""
        return self.session.directory

    def refresh_directory(self) -> Directory:
        """Re-fetch the ACME directory."""
        return self.session.refresh_directory()

    @property
    def account_url(self) -> str | None:
        """Get the account URL (set after registration)."""
        return self.accounts.account_url

    @property
    def thumbprint(self) -> str:
        """RFC 7638 thumbprint of the current account key."""
        return self.session.signer.thumbprint

    def obtain_certificate(
        self,
        identifiers: Sequence[Identifier | str],
        csr: bytes | x509.CertificateSigningRequest,
        resolver: ChallengeResolver,
        max_workers: int = 1,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> CertificateResult:
        """Obtain a certificate for the given identifiers.

        This is the main high-level method that:
        1. Creates an order
        2. Completes all pending authorizations through ``resolver``
        3. Waits for the order to become ready and finalizes it with ``csr``
        4. Waits for issuance and downloads the certificate chain

        The account must already exist (see ``accounts.create_account``).

        Args:
            identifiers: Identifiers (plain strings are DNS names).
            csr: DER-encoded CSR, or a CSR object.
            resolver: Publishes and removes challenge proofs.
            max_workers: Authorizations completed in parallel.
            cancel: Event aborting any polling wait.
            timeout: Deadline in seconds for each polling phase.

        Returns:
            CertificateResult. When an authorization or the order ends
            ``invalid``, ``certificate_chain`` is None and the errors are
            on the returned resources.
        """
        identifiers = [Identifier.dns(i) if isinstance(i, str) else i for i in identifiers]
        token = set_identifiers([i.value for i in identifiers])
        try:
            order = self.orders.create_order(identifiers)
            authorizations = self._complete_authorizations(
                order.authorizations, resolver, max_workers, cancel, timeout
            )

            if any(a.status != AuthorizationStatus.VALID for a in authorizations):
                order = self.orders.refresh(order)
                logger.warning(
                    "Authorization failed, order not finalized",
                    extra={"order_url": order.url, "status": order.status},
                )
                return CertificateResult(order=order, authorizations=authorizations)

            order = self._poll_order(order, cancel, timeout)
            if order.status != OrderStatus.READY:
                return CertificateResult(order=order, authorizations=authorizations)

            order = self.orders.finalize(order, csr)
            order = self._poll_order(order, cancel, timeout)
            if order.status != OrderStatus.VALID:
                logger.warning(
                    "Order did not become valid",
                    extra={"order_url": order.url, "status": order.status},
                )
                return CertificateResult(order=order, authorizations=authorizations)

            chain = self.orders.fetch_certificate(order)
            return CertificateResult(
                order=order, authorizations=authorizations, certificate_chain=chain
            )
        finally:
            reset_identifiers(token)

    def _poll_order(
        self,
        order: Order,
        cancel: threading.Event | None,
        timeout: float | None,
    ) -> Order:
        return self.orders.poll_until_settled(
            order,
            max_attempts=self.MAX_POLL_ATTEMPTS,
            interval=self.POLL_INTERVAL,
            max_interval=self.MAX_POLL_INTERVAL,
            cancel=cancel,
            timeout=timeout,
        )

    def _complete_one(
        self,
        url: str,
        resolver: ChallengeResolver,
        cancel: threading.Event | None,
        timeout: float | None,
    ) -> Authorization:
        authorization = self.authorizations.fetch_authorization(url)
        token = set_identifiers([authorization.identifier.value])
        try:
            return self.authorizations.complete(
                authorization,
                resolver,
                max_attempts=self.MAX_POLL_ATTEMPTS,
                interval=self.POLL_INTERVAL,
                max_interval=self.MAX_POLL_INTERVAL,
                cancel=cancel,
                timeout=timeout,
            )
        finally:
            reset_identifiers(token)

    def _complete_authorizations(
        self,
        urls: list[str],
        resolver: ChallengeResolver,
        max_workers: int,
        cancel: threading.Event | None,
        timeout: float | None,
    ) -> list[Authorization]:
        if max_workers <= 1 or len(urls) <= 1:
            return [self._complete_one(url, resolver, cancel, timeout) for url in urls]

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            # Each worker needs its own copy of the logging context
            futures = [
                executor.submit(
                    contextvars.copy_context().run,
                    self._complete_one,
                    url,
                    resolver,
                    cancel,
                    timeout,
                )
                for url in urls
            ]
            return [future.result() for future in futures]
