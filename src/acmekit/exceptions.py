"""ACME client exceptions."""

from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from acmekit.models import AcmeErrorType, Problem


def parse_retry_after(value: str | None) -> int | None:
    """Parse Retry-After header (seconds or HTTP-date).

    Args:
        value: Retry-After header value.

    Returns:
        Seconds to wait, or None if not parseable.
    """
    if not value:
        return None
    try:
        return max(0, int(value))
    except ValueError:
        pass
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return max(0, int((dt - datetime.now(timezone.utc)).total_seconds()))


class AcmeError(Exception):
    """Base exception for everything raised by acmekit."""


class TransportError(AcmeError):
    """Connection or TLS failure talking to the ACME server.

    Safe for the caller to retry; acmekit never retries these itself.
    """


class ProtocolError(AcmeError):
    """The server answered with something that does not fit the protocol."""


class ValidationError(AcmeError, ValueError):
    """The caller supplied invalid input. Nothing was sent to the server."""


class SigningError(AcmeError):
    """The key cannot be used to sign ACME requests."""


class AcmeTimeoutError(AcmeError, TimeoutError):
    """Polling gave up before the resource settled.

    Attributes:
        last: Last fetched snapshot of the resource, if any.
    """

    def __init__(self, message: str, last: Any = None):
        self.last = last
        super().__init__(message)


class PollCancelledError(AcmeError):
    """Polling was cancelled by the caller.

    Attributes:
        last: Last fetched snapshot of the resource, if any.
    """

    def __init__(self, message: str, last: Any = None):
        self.last = last
        super().__init__(message)


class ProblemError(AcmeError):
    """Error reported by the ACME server as a problem document (RFC 7807)."""

    def __init__(
        self,
        type: str,
        detail: str,
        status_code: int,
        subproblems: list[dict[str, Any]] | None = None,
        retry_after: int | None = None,
    ):
        self.type = type
        self.detail = detail
        self.status_code = status_code
        self.subproblems = subproblems
        self.retry_after = retry_after
        super().__init__(f"{type}: {detail}")

    @property
    def problem(self) -> Problem:
        """The error as a Problem model."""
        return Problem.model_validate(
            {
                "type": self.type,
                "detail": self.detail,
                "status": self.status_code,
                "subproblems": self.subproblems or [],
            }
        )

    @classmethod
    def from_response(
        cls,
        data: dict[str, Any],
        status_code: int,
        headers: Mapping[str, str] | None = None,
    ) -> "ProblemError":
        """Create a ProblemError from a JSON response.

        Routes to appropriate subclass based on error type.

        Args:
            data: Parsed JSON error response.
            status_code: HTTP status code.
            headers: Response headers (for Retry-After extraction).

        Returns:
            ProblemError instance (or appropriate subclass).
        """
        retry_after = parse_retry_after(headers.get("Retry-After")) if headers else None
        error_type = data.get("type") or "about:blank"

        kwargs: dict[str, Any] = {
            "type": error_type,
            "detail": data.get("detail", ""),
            "status_code": status_code,
            "subproblems": data.get("subproblems"),
            "retry_after": retry_after,
        }

        error_class = _PROBLEM_CLASSES.get(error_type, cls)
        return error_class(**kwargs)

    def get_retry_seconds(self, default: int = 3600) -> int:
        """Get retry delay, falling back to default.

        Args:
            default: Default seconds if retry_after is not set.

        Returns:
            Number of seconds to wait before retrying.
        """
        return self.retry_after if self.retry_after is not None else default


class BadNonceError(ProblemError):
    """Bad nonce error (urn:ietf:params:acme:error:badNonce)."""

    pass


class RateLimitError(ProblemError):
    """Rate limit exceeded (urn:ietf:params:acme:error:rateLimited)."""

    @property
    def rate_limit_type(self) -> str:
        """Parse specific rate limit type from detail message.

        Returns:
            Rate limit type identifier.
        """
        detail = self.detail.lower()
        if "exact set" in detail:
            return "duplicate_certificate"
        elif "too many certificates" in detail:
            return "certificates_per_domain"
        elif "too many new orders" in detail:
            return "orders_per_account"
        elif "failed authorizations" in detail:
            return "failed_authorizations"
        return "unknown"


class AlreadyRevokedError(ProblemError):
    """Certificate already revoked (urn:ietf:params:acme:error:alreadyRevoked)."""

    pass


class UnauthorizedError(ProblemError):
    """Client lacks authorization (urn:ietf:params:acme:error:unauthorized)."""

    pass


class OrderNotReadyError(ProblemError):
    """Order not ready for finalization (urn:ietf:params:acme:error:orderNotReady)."""

    pass


class DnsValidationError(ProblemError):
    """DNS validation failed (urn:ietf:params:acme:error:dns)."""

    pass


class CAAError(ProblemError):
    """CAA record forbids issuance (urn:ietf:params:acme:error:caa)."""

    pass


class ServerInternalError(ProblemError):
    """ACME server internal error (urn:ietf:params:acme:error:serverInternal)."""

    pass


_PROBLEM_CLASSES: dict[str, type[ProblemError]] = {
    AcmeErrorType.BAD_NONCE: BadNonceError,
    AcmeErrorType.RATE_LIMITED: RateLimitError,
    AcmeErrorType.ALREADY_REVOKED: AlreadyRevokedError,
    AcmeErrorType.UNAUTHORIZED: UnauthorizedError,
    AcmeErrorType.ORDER_NOT_READY: OrderNotReadyError,
    AcmeErrorType.DNS: DnsValidationError,
    AcmeErrorType.CAA: CAAError,
    AcmeErrorType.SERVER_INTERNAL: ServerInternalError,
}
