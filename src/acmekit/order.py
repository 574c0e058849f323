"""ACME orders (RFC 8555 Section 7.4)."""

import threading
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

import httpx
from cryptography import x509

from acmekit._http import parse_model, require_location
from acmekit._logging import get_identifier_extra, get_logger
from acmekit.certificate import CertificateClient
from acmekit.crypto import base64url_encode, csr_to_der
from acmekit.exceptions import ProtocolError, ValidationError
from acmekit.models import Identifier, Order, OrderStatus
from acmekit.polling import DEFAULT_INTERVAL, DEFAULT_MAX_ATTEMPTS, DEFAULT_MAX_INTERVAL, poll
from acmekit.session import AcmeSession

logger = get_logger(__name__)


def check_transition(previous: Order, current: Order) -> Order:
    """Ensure ``current`` is a legal successor snapshot of ``previous``.

    Raises:
        ProtocolError: If the order moved backwards or left a terminal state.
    """
    if not previous.status.can_become(current.status):
        raise ProtocolError(
            f"Order {current.url} moved from {previous.status} to {current.status}"
        )
    return current


def _timestamp(value: datetime, field: str) -> str:
    """Format a validity bound as RFC 3339 in UTC.

    Raises:
        ValidationError: If ``value`` has no timezone.
    """
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(f"{field} must be timezone-aware")
    return value.astimezone(timezone.utc).isoformat()


class OrderClient:
    """Creates orders and drives them through finalization."""

    def __init__(self, session: AcmeSession, certificates: CertificateClient):
        self._session = session
        self._certificates = certificates

    def create_order(
        self,
        identifiers: Sequence[Identifier],
        not_before: datetime | None = None,
        not_after: datetime | None = None,
    ) -> Order:
        """Create a new certificate order.

        Args:
            identifiers: Identifiers to include in the certificate.
            not_before: Requested notBefore of the certificate.
            not_after: Requested notAfter of the certificate.

        Returns:
            The Order resource, ``pending`` or (with reused authorizations) ``ready``.

        Raises:
            ValidationError: If the list is empty or repeats an identifier,
                or a validity bound is a naive datetime.
        """
        identifiers = list(identifiers)
        if not identifiers:
            raise ValidationError("At least one identifier is required")
        seen: set[tuple[str, str]] = set()
        for identifier in identifiers:
            key = (identifier.type.value, identifier.value)
            if key in seen:
                raise ValidationError(f"Duplicate identifier: {identifier.type}:{identifier.value}")
            seen.add(key)

        payload: dict[str, Any] = {
            "identifiers": [identifier.model_dump(mode="json") for identifier in identifiers]
        }
        if not_before is not None:
            payload["notBefore"] = _timestamp(not_before, "not_before")
        if not_after is not None:
            payload["notAfter"] = _timestamp(not_after, "not_after")

        response = self._session.post(self._session.directory.new_order, payload)
        order = parse_model(Order, response, url=require_location(response))
        logger.info(
            "Order created",
            extra={
                "order_url": order.url,
                "status": order.status,
                "authorizations": len(order.authorizations),
                **get_identifier_extra(),
            },
        )
        return order

    def get_order(self, url: str) -> Order:
        """Fetch an order by URL."""
        return self._fetch(url)[0]

    def refresh(self, order: Order) -> Order:
        """Fetch a fresh snapshot of ``order``.

        Raises:
            ProtocolError: If the server reports a backwards transition.
        """
        return check_transition(order, self.get_order(self._order_url(order)))

    def finalize(self, order: Order, csr: bytes | x509.CertificateSigningRequest) -> Order:
        """Submit the CSR for a ready order.

        Does not wait for issuance; poll with :meth:`poll_until_settled`.

        Args:
            order: An order in ``ready`` state.
            csr: DER-encoded CSR, or a CSR object.

        Returns:
            The order as returned by the server (usually ``processing``).

        Raises:
            ValidationError: If the order is not ``ready``.
        """
        if order.status != OrderStatus.READY:
            raise ValidationError(f"Order must be ready to finalize, not {order.status}")

        payload = {"csr": base64url_encode(csr_to_der(csr))}
        response = self._session.post(order.finalize, payload)
        finalized = parse_model(Order, response, url=order.url)
        logger.info(
            "Order finalized",
            extra={"order_url": order.url, "status": finalized.status, **get_identifier_extra()},
        )
        return check_transition(order, finalized)

    def poll_until_settled(
        self,
        order: Order,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval: float = DEFAULT_INTERVAL,
        max_interval: float = DEFAULT_MAX_INTERVAL,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> Order:
        """Poll an order until it is neither ``pending`` nor ``processing``.

        Args:
            order: Last known snapshot of the order.
            max_attempts: Maximum number of fetches.
            interval: First backoff delay in seconds.
            max_interval: Backoff cap in seconds.
            cancel: Event aborting the wait between attempts.
            timeout: Overall deadline in seconds.

        Returns:
            The settled order (``ready``, ``valid`` or ``invalid``).

        Raises:
            AcmeTimeoutError: If attempts or the deadline run out.
            PollCancelledError: If cancelled.
        """
        url = self._order_url(order)
        previous = order

        def fetch() -> tuple[Order, httpx.Response]:
            nonlocal previous
            current, response = self._fetch(url)
            previous = check_transition(previous, current)
            return current, response

        return poll(
            fetch,
            lambda o: o.status not in (OrderStatus.PENDING, OrderStatus.PROCESSING),
            description=f"order {url}",
            max_attempts=max_attempts,
            interval=interval,
            max_interval=max_interval,
            cancel=cancel,
            timeout=timeout,
        )

    def fetch_certificate(self, order: Order) -> bytes:
        """Download the chain issued for a valid order.

        Returns:
            The chain exactly as delivered by the CA, leaf first.

        Raises:
            ValidationError: If the order is not ``valid`` or has no certificate URL.
        """
        if order.status != OrderStatus.VALID or not order.certificate:
            raise ValidationError(f"Order has no certificate to fetch (status {order.status})")
        return self._certificates.download(order.certificate)

    def _fetch(self, url: str) -> tuple[Order, httpx.Response]:
        response = self._session.post_as_get(url)
        return parse_model(Order, response, url=url), response

    @staticmethod
    def _order_url(order: Order) -> str:
        if not order.url:
            raise ValidationError("Order has no URL")
        return order.url
