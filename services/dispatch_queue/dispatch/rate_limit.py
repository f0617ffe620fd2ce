from __future__ import annotations

import asyncio
import time
from typing import Dict, Optional

from dispatch.config import Settings
from dispatch.metrics import RATE_LIMIT_WAIT_SECONDS


class TokenBucket:
    """Simple token-bucket with monotonic clock and async wait."""

    def __init__(self, tokens_per_sec: float, bucket_size: int) -> None:
        self.tokens_per_sec = max(0.0, float(tokens_per_sec))
        self.bucket_size = max(0, int(bucket_size))
        self._tokens: float = float(self.bucket_size)
        self._last_refill: float = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._last_refill = now
        if self.tokens_per_sec > 0:
            self._tokens = min(self.bucket_size, self._tokens + elapsed * self.tokens_per_sec)

    async def acquire(self) -> float:
        """Acquire one token, waiting if needed. Returns wait seconds."""
        async with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return 0.0
            if self.tokens_per_sec <= 0:
                return 0.0
            delay = (1.0 - self._tokens) / self.tokens_per_sec
            await asyncio.sleep(delay)
            self._refill()
            self._tokens = max(0.0, self._tokens - 1.0)
            return delay


class IdentityRateLimiter:
    """One token bucket per sending identity, created on first use."""

    def __init__(self, tokens_per_sec: float, bucket_size: int) -> None:
        self._tokens_per_sec = tokens_per_sec
        self._bucket_size = bucket_size
        self._buckets: Dict[str, TokenBucket] = {}

    def _bucket(self, identity: str) -> TokenBucket:
        bucket = self._buckets.get(identity)
        if bucket is None:
            bucket = TokenBucket(self._tokens_per_sec, self._bucket_size)
            self._buckets[identity] = bucket
        return bucket

    async def acquire(self, identity: str) -> float:
        waited = await self._bucket(identity).acquire()
        if waited > 0:
            RATE_LIMIT_WAIT_SECONDS.observe(waited)
        return waited


def get_rate_limiter(settings: Settings) -> Optional[IdentityRateLimiter]:
    if settings.send_tokens_per_sec <= 0 or settings.send_bucket_size <= 0:
        return None
    return IdentityRateLimiter(settings.send_tokens_per_sec, settings.send_bucket_size)
