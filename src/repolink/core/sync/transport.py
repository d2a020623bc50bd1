"""
httpx transport with retry and exponential backoff.

The sync engine itself never retries. When retries are wanted, the backend
client is built on a ``RetryTransport``, which retries transient failures
(connection errors, timeouts, 429 and 5xx responses) below the client, so a
sync pass sees either a final response or a final exception.

Example:
    >>> transport = RetryTransport(
    ...     httpx.AsyncHTTPTransport(), RetryConfig(max_retries=2)
    ... )
    >>> client = SyncBackendClient(base_url, transport=transport)

Configuration:
    - Default retries: 2 attempts after the first
    - Default base delay: 1.0 seconds
    - Default multiplier: 2.0x per retry
    - Jitter: Random variance of ±20% added to delay
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts (default: 2)
        base_delay: Initial delay in seconds before first retry (default: 1.0)
        multiplier: Exponential backoff multiplier (default: 2.0)
        jitter: Whether to add jitter to delays (default: True)
        jitter_ratio: Random variance ratio for jitter (default: 0.2 = ±20%)
    """

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        jitter: bool = True,
        jitter_ratio: float = 0.2,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if not 0.0 <= jitter_ratio <= 1.0:
            raise ValueError("jitter_ratio must be between 0.0 and 1.0")

        self.max_retries = max_retries
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.jitter = jitter
        self.jitter_ratio = jitter_ratio

    def calculate_delay(self, attempt: int) -> float:
        """
        Delay before retry number ``attempt`` (0-indexed).

        delay = base_delay * (multiplier ^ attempt), plus optional jitter.
        """
        delay = self.base_delay * (self.multiplier**attempt)
        if self.jitter:
            variance = delay * self.jitter_ratio
            delay = delay + random.uniform(-variance, variance)
        return max(0.0, delay)


def is_retryable_error(exception: Exception) -> bool:
    """
    Determine if a transport exception is transient.

    Timeouts, connection-level failures and a remote end closing the
    connection mid-response (RemoteProtocolError) are retryable. Anything
    else, including local protocol errors, is not.
    """
    if isinstance(exception, httpx.TimeoutException):
        return True
    if isinstance(exception, (httpx.ConnectError, httpx.ReadError, httpx.WriteError)):
        return True
    if isinstance(exception, httpx.RemoteProtocolError):
        return True
    return False


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES


class RetryTransport(httpx.AsyncBaseTransport):
    """
    Wraps another async transport and retries transient failures.

    Request bodies are read up front so a retry can resend them.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self.config = config or RetryConfig()
        self._sleep = sleep

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        attempt = 0
        while True:
            try:
                response = await self._transport.handle_async_request(request)
            except Exception as e:
                if not is_retryable_error(e):
                    raise
                if attempt >= self.config.max_retries:
                    logger.warning(
                        "%s %s: max retries (%d) exceeded: %s",
                        request.method,
                        request.url.path,
                        self.config.max_retries,
                        e,
                    )
                    raise
                reason = str(e) or type(e).__name__
            else:
                if not is_retryable_status(response.status_code):
                    return response
                if attempt >= self.config.max_retries:
                    return response
                await response.aread()
                await response.aclose()
                reason = f"HTTP {response.status_code}"

            delay = self.config.calculate_delay(attempt)
            attempt += 1
            logger.info(
                "%s %s: retry attempt %d/%d after %.2fs due to: %s",
                request.method,
                request.url.path,
                attempt,
                self.config.max_retries,
                delay,
                reason,
            )
            await self._sleep(delay)

    async def aclose(self) -> None:
        await self._transport.aclose()


__all__ = [
    "RETRYABLE_STATUS_CODES",
    "RetryConfig",
    "RetryTransport",
    "is_retryable_error",
    "is_retryable_status",
]
