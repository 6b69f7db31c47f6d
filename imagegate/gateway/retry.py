"""Bounded retry with pure exponential backoff for provider calls and refunds.

    delay_ms = base_delay_ms * 2^attempt     (attempt is 0-based, no jitter)

Only transient throttling is retried. Bad input, content-safety rejections
and timeouts fail fast and reach the caller unmodified.

Classification prefers the structured ``kind`` attribute a transport error
carries (see ``ProviderError``); matching on message text is the fallback for
errors raised outside our own transport layer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from imagegate.gateway.types import ProviderErrorKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 5000

_RATE_LIMIT_MARKERS = ("rate limit", "429", "throttled")


def is_rate_limit_error(message: str) -> bool:
    """Case-insensitive match on the wording providers use for throttling."""
    lower = message.lower()
    return any(marker in lower for marker in _RATE_LIMIT_MARKERS)


def is_transient_error(error: BaseException) -> bool:
    """Default retry classifier."""
    kind = getattr(error, "kind", None)
    if isinstance(kind, ProviderErrorKind):
        return kind == ProviderErrorKind.RATE_LIMITED
    return is_rate_limit_error(str(error))


def backoff_delay_ms(attempt: int, base_delay_ms: int = DEFAULT_BASE_DELAY_MS) -> int:
    return base_delay_ms * (2**attempt)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    should_retry: Callable[[Exception], bool] | None = None,
    on_retry: Callable[[int, int, Exception], None] | None = None,
) -> T:
    """Call ``fn`` and retry classified-transient failures.

    Args:
        fn: Zero-argument coroutine factory; called once per attempt.
        max_retries: Retries after the first call (total calls ≤ max_retries + 1).
        base_delay_ms: Delay before the first retry.
        should_retry: Classifier; defaults to ``is_transient_error``.
        on_retry: Observer called as ``on_retry(attempt, delay_ms, error)``
            with a 1-based attempt number, before sleeping.

    Returns:
        Whatever ``fn`` returns on its first successful call.
    """
    classify = should_retry or is_transient_error

    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if not classify(exc) or attempt >= max_retries:
                raise

            delay_ms = backoff_delay_ms(attempt, base_delay_ms)
            if on_retry is not None:
                on_retry(attempt + 1, delay_ms, exc)
            logger.info("Transient error, retry %d/%d in %dms: %s", attempt + 1, max_retries, delay_ms, exc)
            await asyncio.sleep(delay_ms / 1000)
            attempt += 1
