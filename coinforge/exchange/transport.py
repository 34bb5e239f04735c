"""HTTP transports for the exchange: direct REST and the CORS proxy.

Both share one retry loop and differ only in URL/header construction and
in the delay between attempts.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from coinforge.exchange.errors import (
    ExchangeError,
    InvalidResponseShapeError,
    RateLimitedError,
    classify_exception,
    classify_status,
)
from coinforge.exchange.signing import RequestSigner, build_query

logger = logging.getLogger("coinforge.exchange")

Sleep = Callable[[float], Awaitable[None]]

# Retry settings
_MAX_ATTEMPTS = 3
_DIRECT_RETRY_DELAY = 1.0  # seconds; fixed between attempts
_PROXY_RETRY_BASE_DELAY = 1.0  # seconds; multiplied by attempt number
_REQUEST_TIMEOUT = 15.0


class _RetryingTransport:
    """Shared attempt loop. Subclasses build the request and pick the delay."""

    name = "transport"

    def __init__(
        self,
        base_url: str,
        signer: RequestSigner,
        max_attempts: int = _MAX_ATTEMPTS,
        sleep: Optional[Sleep] = None,
        timeout: float = _REQUEST_TIMEOUT,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._signer = signer
        self._max_attempts = max_attempts
        self._sleep = sleep or asyncio.sleep
        self._timeout = timeout
        self.last_ok: bool = False

    def _delay_for(self, attempt: int) -> float:
        raise NotImplementedError

    def _prepare(
        self, endpoint: str, params: dict, signed: bool,
    ) -> tuple[str, dict[str, str]]:
        raise NotImplementedError

    async def request(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        method: str = "GET",
        signed: bool = False,
    ) -> Any:
        """Perform *method* on *endpoint* and return the decoded JSON body.

        Retries retryable failures up to the attempt limit and raises the
        last classified ``ExchangeError`` once they are exhausted.
        ``NoCredentialsError`` and ``UnauthorizedError`` are raised
        immediately.
        """
        params = params or {}
        last_exc: Optional[ExchangeError] = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                # Fresh timestamp per attempt
                url, headers = self._prepare(endpoint, params, signed)
                async with httpx.AsyncClient() as client:
                    resp = await client.request(
                        method.upper(), url, headers=headers, timeout=self._timeout,
                    )

                if not 200 <= resp.status_code < 300:
                    raise classify_status(resp.status_code, resp.text)

                try:
                    data = resp.json()
                except ValueError as exc:
                    raise InvalidResponseShapeError(
                        f"{endpoint} returned non-JSON body"
                    ) from exc

                self.last_ok = True
                return data

            except Exception as exc:  # noqa: BLE001
                err = classify_exception(exc)
                if not err.retryable:
                    self.last_ok = False
                    if err is exc:
                        raise
                    raise err from exc
                last_exc = err

                if attempt < self._max_attempts:
                    delay = self._delay_for(attempt)
                    if isinstance(err, RateLimitedError) and err.retry_after:
                        delay = max(delay, err.retry_after)
                    logger.warning(
                        "%s %s %s failed (%s); retry %d/%d in %.1fs",
                        self.name, method.upper(), endpoint, err,
                        attempt, self._max_attempts - 1, delay,
                    )
                    await self._sleep(delay)

        self.last_ok = False
        logger.error(
            "%s: all %d attempts failed for %s",
            self.name, self._max_attempts, endpoint,
        )
        raise last_exc  # type: ignore[misc]


class DirectTransport(_RetryingTransport):
    """Talks to the exchange REST API directly with a fixed retry delay."""

    name = "direct"

    def __init__(self, *args, retry_delay: float = _DIRECT_RETRY_DELAY, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._retry_delay = retry_delay

    def _delay_for(self, attempt: int) -> float:
        return self._retry_delay

    def _prepare(self, endpoint, params, signed):
        if signed:
            query = self._signer.signed_query(params)
            headers = self._signer.direct_headers()
        else:
            query = build_query(params)
            headers = {}
        url = f"{self._base_url}/{endpoint}"
        if query:
            url = f"{url}?{query}"
        return url, headers


class ProxyTransport(_RetryingTransport):
    """Routes requests through the signing proxy.

    The proxy holds the full secret; we send the API key and a short
    fingerprint of the secret instead of a signature. Delay grows
    linearly with the attempt number.
    """

    name = "proxy"

    def __init__(self, *args, base_delay: float = _PROXY_RETRY_BASE_DELAY, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._base_delay = base_delay

    def _delay_for(self, attempt: int) -> float:
        return attempt * self._base_delay

    def _prepare(self, endpoint, params, signed):
        headers = self._signer.proxy_headers()
        query = build_query(params)
        url = f"{self._base_url}/{endpoint}"
        if query:
            url = f"{url}?{query}"
        return url, headers
