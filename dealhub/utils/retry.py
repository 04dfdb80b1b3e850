"""Retry helper for outbound ingestion calls."""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from collections.abc import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)


class ServiceOverloadedError(RuntimeError):
    """Raised when an upstream API answers 429/503 and the call should be retried."""


RETRY_EXCEPTIONS = (httpx.TransportError, ServiceOverloadedError, asyncio.TimeoutError)


def retry_async(
    func: Callable[..., Awaitable] | None = None,
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = RETRY_EXCEPTIONS,
):
    """Retry ``func`` with exponential backoff plus jitter.

    Usable bare (``retry_async(client.get)``) or configured
    (``retry_async(attempts=5)(client.get)``).
    """

    def decorate(target: Callable[..., Awaitable]):
        @functools.wraps(target)
        async def wrapper(*args, **kwargs):
            delay = base_delay
            for attempt in range(1, attempts + 1):
                try:
                    return await target(*args, **kwargs)
                except retry_on as exc:
                    if attempt == attempts:
                        raise
                    logger.warning("Attempt %s/%s failed (%s); retrying in %.1fs", attempt, attempts, exc, delay)
                    await asyncio.sleep(delay + random.random())
                    delay *= 2

        return wrapper

    if func is not None:
        return decorate(func)
    return decorate
