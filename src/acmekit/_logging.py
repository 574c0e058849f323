"""Library logging: a silent ``acmekit`` logger plus per-identifier context.

Applications opt in by configuring the ``acmekit`` logger (or the root
logger). Records emitted while an order or authorization is in progress
carry ``identifier`` (one name) or ``identifiers`` (several) in their extra
fields.
"""

import logging
import time
from contextvars import ContextVar, Token

_root = logging.getLogger("acmekit")
_root.addHandler(logging.NullHandler())

# Per thread/task: worker threads start from a copied context
_current_identifiers: ContextVar[list[str] | None] = ContextVar(
    "acmekit_identifiers", default=None
)


def set_identifiers(identifiers: list[str] | None) -> Token[list[str] | None]:
    """Mark ``identifiers`` as the names being worked on.

    Pass the returned token to :func:`reset_identifiers` when done.
    """
    return _current_identifiers.set(identifiers)


def reset_identifiers(token: Token[list[str] | None]) -> None:
    """Restore the identifiers that were current before ``set_identifiers``."""
    _current_identifiers.reset(token)


def get_identifier_extra() -> dict[str, list[str] | str]:
    """Extra fields describing the current identifiers, for ``logger.*(extra=...)``.

    Returns:
        ``{"identifier": name}`` for one name, ``{"identifiers": [...]}`` for
        several, ``{}`` outside any context.
    """
    identifiers = _current_identifiers.get()
    if identifiers is None:
        return {}
    if len(identifiers) == 1:
        return {"identifier": identifiers[0]}
    return {"identifiers": identifiers}


def get_logger(name: str) -> logging.Logger:
    """Logger for an ``acmekit`` module; call with ``__name__``."""
    return logging.getLogger(name)


class Timer:
    """Wall-clock duration of a ``with`` block, in milliseconds.

    ``elapsed_ms`` stays 0 until the block exits.
    """

    def __init__(self) -> None:
        self.elapsed_ms: float = 0
        self._start: float = 0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000
