"""Bounded exponential-backoff retry for exchange calls."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from arena.errors import ExchangeTransientError

logger = logging.getLogger(__name__)


def is_transient(exc: BaseException) -> bool:
    """Default retry predicate: only network / rate-limit failures are retried."""
    return isinstance(exc, ExchangeTransientError)


async def retry_async(
    func: Callable[..., Awaitable[Any]],
    *args,
    attempts: int = 3,
    base_delay: float = 1.0,
    should_retry: Callable[[BaseException], bool] = is_transient,
    label: str | None = None,
    **kwargs,
) -> Any:
    """Await ``func(*args, **kwargs)``, retrying retryable errors.

    Makes at most ``attempts`` calls, sleeping ``base_delay * 2**i`` seconds
    after the i-th failure (1s, 2s, 4s... with the default delay). Errors the
    predicate rejects, and the last error once attempts run out, propagate
    unchanged.
    """
    name = label or getattr(func, "__name__", "call")
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not should_retry(e):
                raise
            if attempt == attempts - 1:
                logger.error(f"{name}: giving up after {attempts} attempts: {e}")
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(
                f"{name}: attempt {attempt + 1}/{attempts} failed ({e}), retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)
