"""Polling loop with Retry-After support and exponential backoff."""

import threading
import time
from collections.abc import Callable, Iterator
from typing import TypeVar

import httpx

from acmekit._logging import get_identifier_extra, get_logger
from acmekit.exceptions import AcmeTimeoutError, PollCancelledError, parse_retry_after

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_INTERVAL = 1.0  # seconds
DEFAULT_MAX_INTERVAL = 30.0  # seconds
DEFAULT_MAX_ATTEMPTS = 30


def backoff_delays(interval: float, max_interval: float) -> Iterator[float]:
    """Yield exponentially growing delays, starting at ``interval``, capped."""
    delay = interval
    while True:
        yield min(delay, max_interval)
        delay *= 2


def _wait(delay: float, cancel: threading.Event | None) -> bool:
    """Sleep for ``delay`` seconds. Returns True if cancelled meanwhile."""
    if cancel is None:
        time.sleep(delay)
        return False
    return cancel.wait(delay)


def poll(
    fetch: Callable[[], tuple[T, httpx.Response]],
    settled: Callable[[T], bool],
    *,
    description: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    interval: float = DEFAULT_INTERVAL,
    max_interval: float = DEFAULT_MAX_INTERVAL,
    cancel: threading.Event | None = None,
    timeout: float | None = None,
) -> T:
    """Fetch a resource until ``settled`` accepts it.

    Between attempts the loop sleeps for the server's Retry-After when the
    response carries one, otherwise for the next backoff delay.

    Args:
        fetch: Returns the current snapshot and the response it came from.
        settled: Predicate telling whether polling can stop.
        description: Human-readable resource name for messages.
        max_attempts: Number of fetches before giving up.
        interval: First backoff delay in seconds.
        max_interval: Cap for backoff delays.
        cancel: Event that aborts the wait between attempts when set.
        timeout: Overall deadline in seconds.

    Returns:
        The first settled snapshot.

    Raises:
        AcmeTimeoutError: If attempts or the deadline run out.
        PollCancelledError: If ``cancel`` is set.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    deadline = time.monotonic() + timeout if timeout is not None else None
    delays = backoff_delays(interval, max_interval)
    last: T | None = None

    for attempt in range(1, max_attempts + 1):
        if cancel is not None and cancel.is_set():
            raise PollCancelledError(f"Polling {description} cancelled", last=last)

        last, response = fetch()
        if settled(last):
            return last
        if attempt == max_attempts:
            break

        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        delay = float(retry_after) if retry_after is not None else next(delays)
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= delay:
                raise AcmeTimeoutError(
                    f"Polling {description} exceeded {timeout}s deadline", last=last
                )

        logger.debug(
            "Resource not settled, waiting",
            extra={
                "resource": description,
                "attempt": attempt,
                "delay": delay,
                "retry_after": retry_after,
                **get_identifier_extra(),
            },
        )
        if _wait(delay, cancel):
            raise PollCancelledError(f"Polling {description} cancelled", last=last)

    raise AcmeTimeoutError(
        f"{description} did not settle after {max_attempts} attempts", last=last
    )
