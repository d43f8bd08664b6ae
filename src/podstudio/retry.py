"""Retry executor with capped exponential backoff.

The executor only absorbs transient failures (connection reset/refused,
host-not-found, timeouts, 502/503/504 and explicit throttling). Everything
else, notably authentication and signature errors, propagates on the first
attempt. Delays follow ``min(base_delay_ms * 2 ** (attempt - 1), 30000)``.
"""

import asyncio
import logging
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import httpx
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_DELAY_MS = 30000

RETRYABLE_STATUS = frozenset({429, 502, 503, 504})

THROTTLING_CODES = frozenset({
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestThrottled",
    "RequestLimitExceeded",
    "TooManyRequests",
    "TooManyRequestsException",
    "RequestTimeout",
    "ServiceUnavailable",
    "BadGateway",
    "GatewayTimeout",
})


@dataclass
class RetryableOperation:
    """Execution context of one ``execute`` call."""

    name: str
    max_attempts: int
    base_delay_ms: int
    attempt: int = 0
    delays_ms: List[int] = field(default_factory=list)

    def next_delay_ms(self) -> int:
        return compute_delay_ms(self.base_delay_ms, self.attempt)


def compute_delay_ms(base_delay_ms: int, attempt: int) -> int:
    """Delay before the attempt following ``attempt`` (1-based)."""
    return min(base_delay_ms * 2 ** (attempt - 1), MAX_DELAY_MS)


def is_transient_error(exc: BaseException) -> bool:
    """Type-based classification of network and backend errors."""
    if isinstance(exc, (ConnectionResetError, ConnectionRefusedError, ConnectionAbortedError)):
        return True
    if isinstance(exc, (TimeoutError, socket.timeout, socket.gaierror, asyncio.TimeoutError)):
        return True
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS
    if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError, ConnectionClosedError)):
        return True
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return status in RETRYABLE_STATUS or error.get("Code") in THROTTLING_CODES
    return bool(getattr(exc, "retryable", False))


def annotate(exc: BaseException, operation: RetryableOperation) -> BaseException:
    """Attach operation name and attempt count to the error being re-raised."""
    exc.operation_name = operation.name
    exc.attempts = operation.attempt
    return exc


class RetryExecutor:
    """Runs operations with exponential backoff.

    Args:
        is_retryable: classifier deciding whether a failure may be retried
        sleep: blocking sleep taking seconds (injectable for tests)
        async_sleep: coroutine sleep taking seconds
    """

    def __init__(
        self,
        is_retryable: Callable[[BaseException], bool] = is_transient_error,
        sleep: Callable[[float], Any] = time.sleep,
        async_sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.is_retryable = is_retryable
        self._sleep = sleep
        self._async_sleep = async_sleep

    def execute(
        self,
        op: Callable[[], T],
        max_attempts: int = 5,
        base_delay_ms: int = 1000,
        name: str = "operation",
    ) -> T:
        operation = self._start(name, max_attempts, base_delay_ms)
        while True:
            operation.attempt += 1
            try:
                return op()
            except Exception as exc:
                delay_ms = self._on_failure(operation, exc)
            self._sleep(delay_ms / 1000.0)

    async def execute_async(
        self,
        op: Callable[[], Awaitable[T]],
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
        name: str = "operation",
    ) -> T:
        operation = self._start(name, max_attempts, base_delay_ms)
        while True:
            operation.attempt += 1
            try:
                return await op()
            except Exception as exc:
                delay_ms = self._on_failure(operation, exc)
            await self._async_sleep(delay_ms / 1000.0)

    def _start(self, name: str, max_attempts: int, base_delay_ms: int) -> RetryableOperation:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        return RetryableOperation(name=name, max_attempts=max_attempts, base_delay_ms=base_delay_ms)

    def _on_failure(self, operation: RetryableOperation, exc: Exception) -> int:
        """Re-raise ``exc`` unless another attempt is due; return the delay."""
        if not self.is_retryable(exc):
            logger.debug("%s: non-retryable %s", operation.name, type(exc).__name__)
            raise annotate(exc, operation)

        if operation.attempt >= operation.max_attempts:
            logger.warning(
                "%s: giving up after %d attempts: %s", operation.name, operation.attempt, exc
            )
            raise annotate(exc, operation)

        delay_ms = operation.next_delay_ms()
        operation.delays_ms.append(delay_ms)
        logger.info(
            "%s: attempt %d/%d failed (%s), retrying in %dms",
            operation.name,
            operation.attempt,
            operation.max_attempts,
            exc,
            delay_ms,
        )
        return delay_ms
