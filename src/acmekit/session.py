"""Signed request pipeline shared by all ACME resource clients."""

from collections.abc import Mapping
from typing import Any

import httpx

from acmekit._http import JOSE_CONTENT_TYPE, USER_AGENT, check_response
from acmekit._logging import Timer, get_identifier_extra, get_logger
from acmekit.crypto import PrivateKey, json_bytes
from acmekit.directory import DirectoryClient
from acmekit.exceptions import BadNonceError, TransportError
from acmekit.models import Directory
from acmekit.nonce import NonceManager
from acmekit.signer import RequestSigner

logger = get_logger(__name__)


class AcmeSession:
    """Directory, nonce and signing state for one account on one CA.

    Every signed request goes through :meth:`post`: the signer takes a nonce,
    the response's Replay-Nonce is fed back, and a ``badNonce`` rejection is
    retried exactly once with a freshly fetched nonce.

    Args:
        http: HTTP client used for all requests.
        directory_url: URL of the ACME directory.
        account_key: Account private key.
        account_url: Account URL, if the account is already known.
    """

    def __init__(
        self,
        http: httpx.Client,
        directory_url: str,
        account_key: PrivateKey,
        account_url: str | None = None,
    ):
        self.http = http
        self.directory_url = directory_url
        self._directory: Directory | None = None
        self._directory_client = DirectoryClient(http)
        self.nonces = NonceManager(http, lambda: self.directory.new_nonce)
        self.signer = RequestSigner(account_key, self.nonces, key_identifier=account_url)

    @property
    def directory(self) -> Directory:
        """The ACME directory (fetched on first use, then kept)."""
        if self._directory is None:
            self._directory = self._directory_client.fetch_directory(self.directory_url)
        return self._directory

    def refresh_directory(self) -> Directory:
        """Fetch the directory again, replacing the kept one."""
        self._directory = self._directory_client.fetch_directory(self.directory_url)
        return self._directory

    def post(
        self,
        url: str,
        payload: Mapping[str, Any] | str,
        *,
        use_jwk: bool = False,
        key: PrivateKey | None = None,
        accept: str | None = None,
    ) -> httpx.Response:
        """Make a JWS-signed POST request to the ACME server.

        Args:
            url: The endpoint URL.
            payload: The request payload (mapping for JSON, "" for POST-as-GET).
            use_jwk: Identify with the account public key instead of ``kid``.
            key: Sign with this key instead of the account key.
            accept: Optional Accept header.

        Returns:
            The HTTP response (status below 400).

        Raises:
            ProblemError: If the ACME server returns a problem document.
            TransportError: On network or TLS failure.
        """
        try:
            return self._post_once(url, payload, use_jwk=use_jwk, key=key, accept=accept)
        except BadNonceError as e:
            logger.warning(
                "Retrying request after badNonce",
                extra={"url": url, "detail": e.detail, **get_identifier_extra()},
            )
            self.nonces.discard()
            return self._post_once(url, payload, use_jwk=use_jwk, key=key, accept=accept)

    def post_as_get(self, url: str, *, accept: str | None = None) -> httpx.Response:
        """Fetch a resource with a signed empty payload (RFC 8555 Section 6.3)."""
        return self.post(url, "", accept=accept)

    def _post_once(
        self,
        url: str,
        payload: Mapping[str, Any] | str,
        *,
        use_jwk: bool,
        key: PrivateKey | None,
        accept: str | None,
    ) -> httpx.Response:
        envelope = self.signer.sign(url, payload, use_jwk=use_jwk, key=key)

        headers = {"Content-Type": JOSE_CONTENT_TYPE, "User-Agent": USER_AGENT}
        if accept:
            headers["Accept"] = accept

        with Timer() as timer:
            try:
                response = self.http.post(
                    url, content=json_bytes(envelope.model_dump()), headers=headers
                )
            except httpx.TransportError as e:
                raise TransportError(f"POST {url} failed: {e}") from e

        logger.debug(
            "Signed request completed",
            extra={
                "url": url,
                "status_code": response.status_code,
                "elapsed_ms": round(timer.elapsed_ms, 1),
                **get_identifier_extra(),
            },
        )

        # Every response, success or error, may carry the next nonce
        self.nonces.observe(response.headers)
        return check_response(response)
