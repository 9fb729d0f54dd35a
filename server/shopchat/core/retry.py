from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx
import openai

T = TypeVar("T")

logger = logging.getLogger("shopchat.upstream")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry for transient upstream failures.

    ``max_retries`` counts extra attempts after the first one. The wait before
    retry ``n`` is ``backoff_sec * n``.
    """

    max_retries: int = 2
    backoff_sec: float = 0.3
    timeout_sec: float | None = None

    def delay_for(self, attempt: int) -> float:
        return self.backoff_sec * attempt


def status_code_of(exc: BaseException) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    value = getattr(exc, "status_code", None)
    if isinstance(value, int):
        return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_transient(exc: BaseException) -> bool:
    """5xx, timeouts and transport failures are retried; everything else is not."""

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError, httpx.TransportError)):
        return True
    status = status_code_of(exc)
    if status is not None:
        return status >= 500
    return isinstance(exc, (openai.APIConnectionError, openai.APITimeoutError))


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    label: str,
    retryable: Callable[[BaseException], bool] = is_transient,
) -> T:
    attempt = 0
    while True:
        try:
            if policy.timeout_sec is not None:
                return await asyncio.wait_for(operation(), timeout=policy.timeout_sec)
            return await operation()
        except Exception as exc:
            if not retryable(exc) or attempt >= policy.max_retries:
                raise
            attempt += 1
            delay = policy.delay_for(attempt)
            logger.warning(
                "upstream.retry",
                extra={
                    "upstream": label,
                    "attempt": attempt,
                    "maxRetries": policy.max_retries,
                    "delaySec": delay,
                    "error": repr(exc),
                },
            )
            if delay > 0:
                await asyncio.sleep(delay)
