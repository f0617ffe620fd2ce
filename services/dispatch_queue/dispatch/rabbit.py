"""RabbitMQ helpers for connections, topology, and publishing.

Wraps ``aio_pika`` for the dispatch events topology:

- ``<queue>``: direct exchange bound to the durable ``<queue>.q`` work queue
- ``<queue>.retry``: retry exchange with one TTL queue per backoff delay; each
  dead-letters back to ``<queue>`` when its TTL expires
- ``<queue>.dlx`` / ``<queue>.dlq``: terminal failures kept for inspection
"""

import asyncio
import json
import os
import ssl
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit

import aio_pika
from aio_pika import DeliveryMode, ExchangeType, Message
from aio_pika.abc import AbstractChannel, AbstractRobustConnection, HeadersType

from dispatch.config import Settings
from dispatch.constants import DEFAULT_RETRY_DELAYS_MS
from dispatch.metrics import PUBLISH_ATTEMPT_TOTAL


ROUTING_KEY = "events"
DEAD_ROUTING_KEY = "dead"


def work_queue_name(queue: str) -> str:
    return f"{queue}.q"


def _build_ssl_context(settings: Settings) -> Optional[ssl.SSLContext]:
    """Return an ``ssl.SSLContext`` for TLS/mTLS if configured, else ``None``."""
    scheme = urlsplit(settings.rabbitmq_url).scheme.lower()
    wants_tls = scheme == "amqps" or any(
        [
            bool(settings.rabbitmq_ssl_ca_path),
            bool(settings.rabbitmq_ssl_cert_path),
            bool(settings.rabbitmq_ssl_key_path),
        ]
    )
    if not wants_tls:
        return None

    context = ssl.create_default_context(cafile=settings.rabbitmq_ssl_ca_path or None)
    if settings.rabbitmq_ssl_cert_path and settings.rabbitmq_ssl_key_path:
        context.load_cert_chain(settings.rabbitmq_ssl_cert_path, settings.rabbitmq_ssl_key_path)

    if not settings.rabbitmq_ssl_verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    else:
        context.check_hostname = bool(settings.rabbitmq_ssl_check_hostname)
        context.verify_mode = ssl.CERT_REQUIRED
    return context


async def connect(amqp_url: str | None = None) -> AbstractRobustConnection:
    """Create a robust AMQP connection with optional TLS and retry/backoff.

    Environment overrides:
    - ``RABBITMQ_CONNECT_ATTEMPTS`` (default: 12)
    - ``RABBITMQ_CONNECT_BASE_DELAY_MS`` (default: 500)
    - ``RABBITMQ_CONNECT_MAX_DELAY_MS`` (default: 3000)
    """
    settings = Settings()
    url = amqp_url or settings.rabbitmq_url
    ssl_context = _build_ssl_context(settings)

    max_attempts = int(os.getenv("RABBITMQ_CONNECT_ATTEMPTS", "12"))
    delay_ms = int(os.getenv("RABBITMQ_CONNECT_BASE_DELAY_MS", "500"))
    max_delay_ms = int(os.getenv("RABBITMQ_CONNECT_MAX_DELAY_MS", "3000"))

    last_exc: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            if ssl_context is not None:
                return await aio_pika.connect_robust(url, ssl=True, ssl_context=ssl_context)  # type: ignore[arg-type]
            return await aio_pika.connect_robust(url)
        except Exception as exc:  # noqa: BLE001
            last_exc = exc
            if attempt == max_attempts:
                break
            await asyncio.sleep(delay_ms / 1000.0)
            delay_ms = min(int(delay_ms * 2), max_delay_ms)
    assert last_exc is not None
    raise last_exc


async def declare_events_topology(
    channel: AbstractChannel,
    queue: str,
    delays_ms: list[int] | None = None,
) -> None:
    """Declare the events exchange/queue, retry delay queues, and DLQ."""
    if delays_ms is None:
        delays_ms = DEFAULT_RETRY_DELAYS_MS

    exchange = await channel.declare_exchange(queue, ExchangeType.DIRECT, durable=True)
    work_queue = await channel.declare_queue(work_queue_name(queue), durable=True)
    await work_queue.bind(exchange, routing_key=ROUTING_KEY)

    retry_exchange = await channel.declare_exchange(f"{queue}.retry", ExchangeType.DIRECT, durable=True)
    for delay in delays_ms:
        # Messages wait here until TTL then DLX back to the events exchange
        delay_queue = await channel.declare_queue(
            f"{queue}.retry.{delay}",
            durable=True,
            arguments={
                "x-message-ttl": delay,
                "x-dead-letter-exchange": queue,
                "x-dead-letter-routing-key": ROUTING_KEY,
            },
        )
        await delay_queue.bind(retry_exchange, routing_key=f"delay_{delay}")

    dlx = await channel.declare_exchange(f"{queue}.dlx", ExchangeType.DIRECT, durable=True)
    dlq = await channel.declare_queue(f"{queue}.dlq", durable=True)
    await dlq.bind(dlx, routing_key=DEAD_ROUTING_KEY)


def _json_message(event: Mapping[str, Any], headers: Optional[HeadersType]) -> Message:
    body = json.dumps(event, separators=(",", ":")).encode("utf-8")
    hdrs: Dict[str, Any] = dict(headers) if headers else {}
    return Message(
        body=body,
        content_type="application/json",
        delivery_mode=DeliveryMode.PERSISTENT,
        headers=hdrs,
    )


async def publish_event(
    channel: AbstractChannel,
    queue: str,
    event: Mapping[str, Any],
    headers: Optional[HeadersType] = None,
) -> None:
    """Publish a queue event to the events exchange."""
    exchange = await channel.get_exchange(queue)
    action = str(event.get("action", "unknown"))
    try:
        await exchange.publish(_json_message(event, headers), routing_key=ROUTING_KEY, mandatory=True)
    except Exception:
        PUBLISH_ATTEMPT_TOTAL.labels(action=action, result="error").inc()
        raise
    PUBLISH_ATTEMPT_TOTAL.labels(action=action, result="ok").inc()


async def schedule_retry(
    channel: AbstractChannel,
    queue: str,
    event: Mapping[str, Any],
    delay_ms: int,
    headers: Optional[HeadersType] = None,
) -> None:
    """Send a failed event to the retry exchange for delayed redelivery."""
    exchange = await channel.get_exchange(f"{queue}.retry")
    await exchange.publish(_json_message(event, headers), routing_key=f"delay_{delay_ms}")


async def publish_to_dlq(
    channel: AbstractChannel,
    queue: str,
    event: Mapping[str, Any],
    headers: Optional[HeadersType] = None,
) -> None:
    """Publish a terminal failure to the DLQ exchange."""
    dlx = await channel.get_exchange(f"{queue}.dlx")
    await dlx.publish(_json_message(event, headers), routing_key=DEAD_ROUTING_KEY)


class EventPublisher:
    """Publishes follow-up events (e.g. delivery-issue escalations) on a shared channel."""

    def __init__(self, channel: AbstractChannel, queue: str) -> None:
        self._channel = channel
        self._queue = queue

    async def publish(self, event: Mapping[str, Any]) -> None:
        await publish_event(self._channel, self._queue, event)
