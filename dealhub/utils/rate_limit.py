"""Per-host request pacing."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict


class RateLimiter:
    """Keeps at least ``1 / rate`` seconds between requests to the same host."""

    def __init__(self, *, rate: float = 0.5) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.min_interval = 1.0 / rate
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._last_request: dict[str, float] = {}

    async def wait_for_host(self, host: str) -> None:
        async with self._locks[host]:
            last = self._last_request.get(host)
            if last is not None:
                remaining = self.min_interval - (time.monotonic() - last)
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self._last_request[host] = time.monotonic()
