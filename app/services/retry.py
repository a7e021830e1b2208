import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings
from app.core.exceptions import ExtractionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable_error(exc: BaseException) -> bool:
    """Only transient transport failures are retried; config and query errors are terminal."""
    if isinstance(exc, ExtractionError):
        return exc.retryable
    return isinstance(exc, (httpx.TransportError, asyncio.TimeoutError))


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_retries: int | None = None,
    initial_delay: float | None = None,
    factor: float | None = None,
) -> T:
    """Awaits `fn()`, retrying retryable failures up to `max_retries` more times.

    Waits `initial_delay * factor ** n` seconds before retry n (0-based).
    Non-retryable errors and the last retryable error are re-raised as-is.
    """
    max_retries = settings.RETRY_MAX_RETRIES if max_retries is None else max_retries
    initial_delay = (
        settings.RETRY_INITIAL_DELAY_MS / 1000 if initial_delay is None else initial_delay
    )
    factor = settings.RETRY_BACKOFF_FACTOR if factor is None else factor

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=initial_delay, exp_base=factor),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            result = await fn()
    return result
