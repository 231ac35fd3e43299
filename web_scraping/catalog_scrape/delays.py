"""
Randomized waits and exponential backoff used between browser steps.

The target site penalizes bursts, so every navigation is separated by a
human-looking pause.
"""
import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def random_delay(min_ms: int = 1000, max_ms: int = 3000) -> None:
    delay = random.randint(min_ms, max_ms)
    logger.debug("[DELAY] Waiting %dms", delay)
    await asyncio.sleep(delay / 1000)


def backoff_seconds(
    attempt: int,
    base_ms: int = 1000,
    max_ms: int = 30000,
    jitter: float = 0.3,
    rng: Callable[[], float] = random.random,
) -> float:
    """
    Delay for a 0-indexed retry attempt: base * 2^attempt, capped, plus up to
    `jitter` of itself so retries from separate jobs don't line up.
    """
    delay = min(base_ms * (2 ** attempt), max_ms)
    return (delay + rng() * jitter * delay) / 1000


async def exponential_backoff(attempt: int, base_ms: int = 1000, max_ms: int = 30000) -> None:
    seconds = backoff_seconds(attempt, base_ms, max_ms)
    logger.info("[BACKOFF] Attempt %d: waiting %dms", attempt + 1, round(seconds * 1000))
    await asyncio.sleep(seconds)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    backoff: Callable[[int], Awaitable[None]] = exponential_backoff,
) -> T:
    last_error: Optional[BaseException] = None

    for attempt in range(max_attempts):
        try:
            return await fn()
        except Exception as exc:
            last_error = exc
            if should_retry is not None and not should_retry(exc):
                raise
            if attempt == max_attempts - 1:
                break
            logger.warning("[RETRY] Attempt %d failed: %s", attempt + 1, exc)
            await backoff(attempt)

    raise last_error
