"""Replay-nonce bookkeeping (RFC 8555 Section 7.2)."""

import threading
from collections.abc import Callable, Mapping

import httpx

from acmekit._logging import get_logger
from acmekit.exceptions import ProtocolError, TransportError

logger = get_logger(__name__)

REPLAY_NONCE_HEADER = "Replay-Nonce"


class NonceManager:
    """Holds at most one unused nonce and hands it out exactly once.

    Args:
        http: HTTP client used to reach the newNonce endpoint.
        new_nonce_url: Callable returning the newNonce URL (resolved lazily,
            so the directory is only fetched when a nonce is first needed).
    """

    def __init__(self, http: httpx.Client, new_nonce_url: Callable[[], str]):
        self._http = http
        self._new_nonce_url = new_nonce_url
        self._nonce: str | None = None
        self._lock = threading.Lock()

    def acquire(self) -> str:
        """Take the cached nonce, or fetch a fresh one.

        The cache is emptied before returning, so two callers can never
        receive the same value.

        Raises:
            TransportError: If the newNonce request fails at the network level.
            ProtocolError: If the server does not return a Replay-Nonce.
        """
        with self._lock:
            if self._nonce is not None:
                nonce, self._nonce = self._nonce, None
                return nonce
            return self._fetch()

    def observe(self, headers: Mapping[str, str]) -> None:
        """Cache the Replay-Nonce from a response, if it carries one."""
        nonce = headers.get(REPLAY_NONCE_HEADER)
        if nonce:
            with self._lock:
                self._nonce = nonce

    def discard(self) -> None:
        """Drop the cached nonce so the next acquire() fetches a new one."""
        with self._lock:
            self._nonce = None

    def _fetch(self) -> str:
        url = self._new_nonce_url()
        logger.debug("Requesting fresh nonce", extra={"url": url})
        try:
            response = self._http.head(url)
        except httpx.TransportError as e:
            raise TransportError(f"Failed to fetch nonce from {url}: {e}") from e

        nonce = response.headers.get(REPLAY_NONCE_HEADER)
        if response.status_code >= 400 or not nonce:
            raise ProtocolError(
                f"newNonce endpoint returned HTTP {response.status_code} without a Replay-Nonce"
            )
        return nonce
