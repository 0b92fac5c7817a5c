"""Classification of chain/infra errors at each call site's catch boundary."""

import asyncio
from enum import StrEnum

import aiohttp
import httpx


class ErrorKind(StrEnum):
    TIMEOUT = "timeout"
    STALE_SUBSCRIPTION = "stale_subscription"
    CONNECTION = "connection"
    UNKNOWN = "unknown"


class LedgerError(Exception):
    """Raised when the ledger returns something the bot cannot use."""


STALE_SUBSCRIPTION_MARKERS = (
    "results is not iterable",
    "filterideventsubscriber",
    "_emitresults",
    "filter not found",
    "unknown filter",
)

TIMEOUT_MARKERS = ("timeout", "timed out")
CONNECTION_MARKERS = ("connection", "network")


def _message(exc: BaseException) -> str:
    return (str(exc) or type(exc).__name__).lower()


def is_stale_subscription(exc: BaseException) -> bool:
    """True if the error means a registered filter is gone at the provider."""
    msg = _message(exc)
    if any(marker in msg for marker in STALE_SUBSCRIPTION_MARKERS):
        return True
    return "filter" in msg and "does not exist" in msg


def _chain(exc: BaseException):
    """The error and the errors it was raised from, outermost first."""
    seen: set[int] = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        exc = exc.__cause__


def _classify_one(exc: BaseException) -> ErrorKind:
    if is_stale_subscription(exc):
        return ErrorKind.STALE_SUBSCRIPTION
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorKind.TIMEOUT
    msg = _message(exc)
    if any(marker in msg for marker in TIMEOUT_MARKERS):
        return ErrorKind.TIMEOUT
    # aiohttp (web3's async transport) raises OSError subclasses and
    # ClientConnectionError for refused or dropped connections.
    if isinstance(exc, (OSError, aiohttp.ClientConnectionError, httpx.NetworkError)):
        return ErrorKind.CONNECTION
    if any(marker in msg for marker in CONNECTION_MARKERS):
        return ErrorKind.CONNECTION
    return ErrorKind.UNKNOWN


def classify_error(exc: BaseException) -> ErrorKind:
    """Classify an error, looking through wrapped causes."""
    for link in _chain(exc):
        kind = _classify_one(link)
        if kind is not ErrorKind.UNKNOWN:
            return kind
    return ErrorKind.UNKNOWN


def is_recoverable(exc: BaseException) -> bool:
    return classify_error(exc) is not ErrorKind.UNKNOWN
