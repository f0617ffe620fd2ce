"""Per-recipient delivery with failure isolation.

``Dispatcher.dispatch`` never raises for a single recipient's problems: an
unresolvable identity or a provider failure comes back as a failed
:class:`SendResult` and a metric. Sends share one bounded pool so a large
roster cannot open an unbounded number of provider calls.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Literal, Optional, Sequence

from dispatch.config import Settings
from dispatch.directory import Directory
from dispatch.metrics import INVALID_DESTINATION_TOTAL, SEND_LATENCY_SECONDS, SEND_TOTAL
from dispatch.provider import Provider
from dispatch.rate_limit import IdentityRateLimiter


logger = logging.getLogger(__name__)

SendOutcome = Literal["sent", "invalid_destination", "provider_error"]


@dataclass(frozen=True)
class OutboundText:
    phone: str
    identity: str
    body: str
    media: Sequence[str] = field(default_factory=tuple)


@dataclass(frozen=True)
class SendResult:
    phone: str
    identity: str
    outcome: SendOutcome
    sid: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == "sent"


class Dispatcher:
    def __init__(
        self,
        directory: Directory,
        provider: Provider,
        settings: Settings,
        rate_limiter: Optional[IdentityRateLimiter] = None,
    ) -> None:
        self._directory = directory
        self._provider = provider
        self._settings = settings
        self._rate_limiter = rate_limiter
        self._pool = asyncio.Semaphore(max(1, settings.send_concurrency))

    def status_callback_url(self, key: int, api_code: str) -> str:
        base = self._settings.status_callback_base_url.rstrip("/")
        return f"{base}/{key}/?code={api_code}"

    async def dispatch(
        self,
        source: str,
        type: str,
        key: Optional[int],
        phone: str,
        identity_name: str,
        body: str,
        media: Sequence[str] = (),
    ) -> SendResult:
        """Send one text. ``key`` ties later status callbacks to the audit record."""
        catalog = await self._directory.identities()
        identity = catalog.get(identity_name)
        if identity is None or not identity.has_credentials:
            logger.error("Invalid phone information - %s (to %s, type %s)", identity_name, phone, type)
            INVALID_DESTINATION_TOTAL.labels(identity=identity_name).inc()
            SEND_TOTAL.labels(source=source, type=type, result="invalid_destination").inc()
            return SendResult(phone, identity_name, "invalid_destination", error="unresolvable identity")

        callback = self.status_callback_url(key, catalog.api_code) if key is not None else None
        async with self._pool:
            if self._rate_limiter is not None:
                await self._rate_limiter.acquire(identity_name)
            start = time.perf_counter()
            try:
                sid = await self._provider.send(identity, phone, body, media, callback)
            except Exception as exc:  # noqa: BLE001
                logger.error("send %s to %s via %s failed", type, phone, identity_name, exc_info=exc)
                SEND_TOTAL.labels(source=source, type=type, result="error").inc()
                return SendResult(phone, identity_name, "provider_error", error=str(exc))
            finally:
                SEND_LATENCY_SECONDS.observe(time.perf_counter() - start)
        SEND_TOTAL.labels(source=source, type=type, result="ok").inc()
        return SendResult(phone, identity_name, "sent", sid=sid)

    async def dispatch_many(
        self,
        source: str,
        type: str,
        key: Optional[int],
        texts: Iterable[OutboundText],
    ) -> list[SendResult]:
        """Fan out concurrently; every recipient is attempted regardless of siblings."""
        results = await asyncio.gather(
            *(self.dispatch(source, type, key, t.phone, t.identity, t.body, t.media) for t in texts)
        )
        failed = sum(1 for r in results if not r.ok)
        if failed:
            logger.warning("%s text %s: %d of %d sends failed", type, key, failed, len(results))
        return list(results)
