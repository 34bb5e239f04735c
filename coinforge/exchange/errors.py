"""Exchange error taxonomy and classification helpers.

Every failure surfaced by the connectivity layer is one of these types,
so callers can decide between retrying, falling back and giving up
without inspecting HTTP details.
"""

from typing import Optional

import httpx


class ExchangeError(Exception):
    """Base class for all exchange-facing failures."""

    retryable: bool = False


class NoCredentialsError(ExchangeError):
    """An authenticated call was attempted without an API key pair."""

    def __init__(self, message: str = "API credentials not configured") -> None:
        super().__init__(message)


class NetworkError(ExchangeError):
    """Transport-level failure: unreachable host, timeout, 5xx."""

    retryable = True


NetworkUnreachable = NetworkError


class InvalidResponseShapeError(NetworkError):
    """The exchange answered 2xx but the payload is not what we expected."""


class UnauthorizedError(ExchangeError):
    """401/403 — the key is invalid or lacks the required permission."""

    def __init__(self, message: str, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.hint = hint or (
            "Check that the API key is valid and has the 'Enable Reading' "
            "and 'Enable Spot Trading' permissions for this IP."
        )


PermissionDeniedError = UnauthorizedError


class RateLimitedError(ExchangeError):
    """418/429 — the exchange asked us to back off."""

    retryable = True

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class UnknownStatusError(ExchangeError):
    """Any other non-2xx status. Not retried; only 5xx, 408 and 418/429 are."""

    def __init__(self, status: int, message: str = "") -> None:
        super().__init__(message or f"Unexpected HTTP status {status}")
        self.status = status


_NETWORK_PATTERNS = (
    "network",
    "offline",
    "internet",
    "econnrefused",
    "enotfound",
    "failed to fetch",
    "timeout",
    "timed out",
    "err_connection",
    "connection",
    "unreachable",
)


def classify_status(status: int, body: str = "") -> ExchangeError:
    """Map a non-2xx HTTP status to the matching ``ExchangeError``."""
    detail = f"HTTP {status}: {body[:200]}" if body else f"HTTP {status}"
    if status in (401, 403):
        return UnauthorizedError(detail)
    if status in (418, 429):
        return RateLimitedError(detail)
    if status == 408 or status >= 500:
        return NetworkError(detail)
    return UnknownStatusError(status, detail)


def classify_exception(exc: Exception) -> ExchangeError:
    """Wrap a foreign exception in the taxonomy.

    ``ExchangeError`` instances pass through unchanged.
    """
    if isinstance(exc, ExchangeError):
        return exc
    if isinstance(exc, (httpx.TransportError, httpx.TimeoutException)):
        return NetworkError(f"{type(exc).__name__}: {exc}")
    if isinstance(exc, ValueError):
        return InvalidResponseShapeError(f"Malformed response: {exc}")
    if is_network_error(exc):
        return NetworkError(str(exc))
    return UnknownStatusError(0, f"{type(exc).__name__}: {exc}")


def is_network_error(exc: BaseException) -> bool:
    """True when *exc* is a network-class failure.

    Typed errors are checked by class; anything else falls back to
    message pattern matching.
    """
    if isinstance(exc, NetworkError):
        return True
    if isinstance(exc, ExchangeError):
        return False
    if isinstance(exc, (httpx.TransportError, httpx.TimeoutException)):
        return True
    message = str(exc).lower()
    return any(pattern in message for pattern in _NETWORK_PATTERNS)
