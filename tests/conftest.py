"""Pytest fixtures for the acmekit test suite."""

import itertools
import json
import logging
import logging.handlers
import os
from collections.abc import Generator
from pathlib import Path
from typing import Any

import httpx
import pytest
import respx
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from acmekit.crypto import base64url_decode
from acmekit.session import AcmeSession

# Default URLs for local pebble setup
PEBBLE_DIRECTORY_URL = os.environ.get("PEBBLE_DIRECTORY_URL", "https://localhost:14000/dir")
CHALLTESTSRV_URL = os.environ.get("CHALLTESTSRV_URL", "http://localhost:8055")

# Fake CA used by the unit tests
ACME_BASE = "https://acme.test"
DIRECTORY_URL = f"{ACME_BASE}/directory"
NEW_NONCE_URL = f"{ACME_BASE}/new-nonce"
NEW_ACCOUNT_URL = f"{ACME_BASE}/new-account"
NEW_ORDER_URL = f"{ACME_BASE}/new-order"
NEW_AUTHZ_URL = f"{ACME_BASE}/new-authz"
REVOKE_CERT_URL = f"{ACME_BASE}/revoke-cert"
KEY_CHANGE_URL = f"{ACME_BASE}/key-change"
ACCOUNT_URL = f"{ACME_BASE}/acct/1"

DIRECTORY = {
    "newNonce": NEW_NONCE_URL,
    "newAccount": NEW_ACCOUNT_URL,
    "newOrder": NEW_ORDER_URL,
    "newAuthz": NEW_AUTHZ_URL,
    "revokeCert": REVOKE_CERT_URL,
    "keyChange": KEY_CHANGE_URL,
    "meta": {
        "termsOfService": f"{ACME_BASE}/terms",
        "website": "https://ca.test",
        "caaIdentities": ["acme.test"],
        "externalAccountRequired": False,
    },
}


# Keys are expensive to generate, so share them across the session


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def ec384_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP384R1())


@pytest.fixture(scope="session")
def ec521_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP521R1())


@pytest.fixture(scope="session")
def ed25519_key() -> ed25519.Ed25519PrivateKey:
    return ed25519.Ed25519PrivateKey.generate()


def decode_jws(request: httpx.Request) -> tuple[dict[str, Any], Any]:
    """Split a signed request into its protected header and payload.

    The payload is returned as "" for POST-as-GET requests.
    """
    body = json.loads(request.content)
    protected = json.loads(base64url_decode(body["protected"]))
    payload = json.loads(base64url_decode(body["payload"])) if body["payload"] else ""
    return protected, payload


class FakeAcme:
    """A scripted ACME server on top of a respx router.

    Serves the directory and newNonce endpoints; tests add routes for the
    resources they exercise and build responses with :meth:`reply` and
    :meth:`problem`, which attach a fresh Replay-Nonce like a real CA.
    """

    def __init__(self, router: respx.MockRouter) -> None:
        self.router = router
        self._counter = itertools.count(1)
        self.issued_nonces: list[str] = []
        self.directory = router.get(DIRECTORY_URL).mock(
            return_value=httpx.Response(200, json=DIRECTORY)
        )
        self.new_nonce = router.head(NEW_NONCE_URL).mock(
            side_effect=lambda request: httpx.Response(
                200, headers={"Replay-Nonce": self.next_nonce()}
            )
        )

    def next_nonce(self) -> str:
        nonce = f"nonce-{next(self._counter)}"
        self.issued_nonces.append(nonce)
        return nonce

    def reply(
        self,
        status: int = 200,
        json: Any = None,
        headers: dict[str, str] | None = None,
        content: bytes = b"",
    ) -> httpx.Response:
        all_headers = {"Replay-Nonce": self.next_nonce(), **(headers or {})}
        if json is not None:
            return httpx.Response(status, json=json, headers=all_headers)
        return httpx.Response(status, content=content, headers=all_headers)

    def problem(
        self,
        error: str,
        detail: str = "",
        status: int = 400,
        headers: dict[str, str] | None = None,
        **fields: Any,
    ) -> httpx.Response:
        body = {
            "type": f"urn:ietf:params:acme:error:{error}",
            "detail": detail,
            "status": status,
            **fields,
        }
        return self.reply(
            status,
            json=body,
            headers={"Content-Type": "application/problem+json", **(headers or {})},
        )


@pytest.fixture
def fake_acme() -> Generator[FakeAcme]:
    """A respx-backed fake CA; every httpx request in the test is routed to it."""
    with respx.mock(assert_all_mocked=True, assert_all_called=False) as router:
        yield FakeAcme(router)


@pytest.fixture
def http_client(fake_acme: FakeAcme) -> Generator[httpx.Client]:
    client = httpx.Client()
    yield client
    client.close()


@pytest.fixture
def session(http_client: httpx.Client, ec_key: ec.EllipticCurvePrivateKey) -> AcmeSession:
    """A session for an already registered account."""
    return AcmeSession(http_client, DIRECTORY_URL, ec_key, account_url=ACCOUNT_URL)


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Make polling waits instant; returns the list of requested delays."""
    delays: list[float] = []
    monkeypatch.setattr("acmekit.polling.time.sleep", delays.append)
    return delays


@pytest.fixture(scope="session")
def pebble_ca_cert() -> str | bool:
    """Get SSL verification setting for Pebble.

    Returns False to disable SSL verification for pebble tests.
    Pebble uses a self-signed certificate that's not meant for production.

    If PEBBLE_CA_CERT env var is set, returns that path instead.
    """
    ca_cert_path = os.environ.get("PEBBLE_CA_CERT")
    if ca_cert_path and Path(ca_cert_path).exists():
        return ca_cert_path
    return False


@pytest.fixture(scope="session")
def pebble_directory_url(pebble_ca_cert: str | bool) -> str:
    """Return the Pebble ACME directory URL, skipping if Pebble is not running."""
    try:
        httpx.get(PEBBLE_DIRECTORY_URL, verify=pebble_ca_cert, timeout=5).raise_for_status()
    except httpx.HTTPError:
        pytest.skip(f"Pebble not available at {PEBBLE_DIRECTORY_URL}")
    return PEBBLE_DIRECTORY_URL


@pytest.fixture(scope="session")
def challtestsrv_url() -> str:
    """Return the pebble-challtestsrv management API URL."""
    return CHALLTESTSRV_URL


class LogCapture:
    """Helper class to capture and inspect log records."""

    def __init__(self, handler: logging.handlers.MemoryHandler) -> None:
        self._handler = handler

    @property
    def records(self) -> list[logging.LogRecord]:
        """Get all captured log records."""
        return self._handler.buffer

    def get_records(
        self, level: int | None = None, name: str | None = None
    ) -> list[logging.LogRecord]:
        """Get log records filtered by level and/or logger name.

        Args:
            level: Filter by log level (e.g., logging.INFO).
            name: Filter by logger name prefix (e.g., "acmekit.session").

        Returns:
            List of matching log records.
        """
        records = self.records
        if level is not None:
            records = [r for r in records if r.levelno == level]
        if name is not None:
            records = [r for r in records if r.name.startswith(name)]
        return records

    def get_messages(self, level: int | None = None, name: str | None = None) -> list[str]:
        """Get log messages filtered by level and/or logger name."""
        return [r.getMessage() for r in self.get_records(level, name)]

    def clear(self) -> None:
        """Clear all captured log records."""
        self._handler.buffer.clear()


@pytest.fixture
def log_capture() -> Generator[LogCapture]:
    """Capture logs from the acmekit library during a test.

    Usage:
        def test_something(log_capture):
            # do something that logs
            assert "Order created" in log_capture.get_messages(logging.INFO)
    """
    handler = logging.handlers.MemoryHandler(capacity=1000)
    handler.setLevel(logging.DEBUG)

    acmekit_logger = logging.getLogger("acmekit")
    original_level = acmekit_logger.level
    acmekit_logger.setLevel(logging.DEBUG)
    acmekit_logger.addHandler(handler)

    try:
        yield LogCapture(handler)
    finally:
        acmekit_logger.removeHandler(handler)
        acmekit_logger.setLevel(original_level)
        handler.close()
