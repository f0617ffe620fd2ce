"""
Asynchronous dispatch worker.

- Consumes the events queue and routes each event to its handler by ``action``
- Stamps a ``dispatch_key`` on first delivery so retries rewrite the same audit record
- Drops configuration errors, retries dependency failures via delay queues,
  and ships terminal failures to the DLQ plus the ``dead_letters`` table
"""

import asyncio
import json
import logging
import signal
import time
from typing import Any, Mapping, Optional

from aio_pika.abc import AbstractChannel, AbstractIncomingMessage
from opentelemetry import context  # type: ignore

from dispatch import constants as c
from dispatch.audit import allocate_key
from dispatch.config import Settings
from dispatch.context import DispatchContext
from dispatch.db import dispose_engine
from dispatch.directory import Directory
from dispatch.dispatcher import Dispatcher
from dispatch.errors import RejectedMessage, UnknownActionError
from dispatch.identities import catalog_loader
from dispatch.log import setup_logging
from dispatch.metrics import (
    CONFIGURATION_ERROR_TOTAL,
    WORKER_DLQ_TOTAL,
    WORKER_EVENT_TOTAL,
    WORKER_PROCESS_LATENCY_SECONDS,
    WORKER_RETRY_TOTAL,
    start_metrics_server,
)
from dispatch.models import DeadLetterRecord
from dispatch.provider import TwilioProvider
from dispatch.rabbit import (
    EventPublisher,
    connect,
    declare_events_topology,
    publish_to_dlq,
    schedule_retry,
    work_queue_name,
)
from dispatch.rate_limit import get_rate_limiter
from dispatch.retry import decide_retry
from dispatch.router import EventRouter
from dispatch.store import SqlStore, Store
from dispatch.tracing import extract_context_from_headers, get_tracer, start_tracing
from dispatch.transcribe import AwsTranscriptSource


logger = logging.getLogger("dispatch.worker")


def build_context(settings: Settings, channel: AbstractChannel) -> DispatchContext:
    """Wire the production collaborators for one worker process."""
    directory = Directory(catalog_loader(settings.twilio_secret_id, settings.aws_region))
    dispatcher = Dispatcher(directory, TwilioProvider(), settings, rate_limiter=get_rate_limiter(settings))
    return DispatchContext(
        settings=settings,
        store=SqlStore(),
        directory=directory,
        dispatcher=dispatcher,
        publisher=EventPublisher(channel, settings.events_queue),
        transcripts=AwsTranscriptSource(settings.aws_region),
    )


def stamp_dispatch_key(payload: dict[str, Any]) -> dict[str, Any]:
    """Give the event a stable key on first delivery; later deliveries keep it."""
    if not payload.get("dispatch_key"):
        payload["dispatch_key"] = allocate_key()
    return payload


class Worker:
    """Consumes the events queue with bounded concurrency.

    Concurrency is bounded by `WORKER_PREFETCH` (AMQP QoS) and `WORKER_CONCURRENCY`
    (semaphore); the effective limit is the smaller of the two. Events carry no
    ordering guarantee.

    Example:
    ```python
    settings = Settings()
    await Worker(settings).run()
    ```
    """

    def __init__(self, settings: Settings, router: Optional[EventRouter] = None, store: Optional[Store] = None):
        self.settings = settings
        self.router = router
        self.store = store
        self.channel: Optional[AbstractChannel] = None
        self._stopping = asyncio.Event()
        self._sem = asyncio.Semaphore(max(1, settings.worker_concurrency))
        self._tracer = get_tracer("dispatch-worker")

    async def run(self) -> None:
        """Connect to RabbitMQ and consume until stopped."""
        settings = self.settings
        try:
            start_metrics_server(settings.metrics_port)
            logger.info("Metrics server listening on :%d /metrics", settings.metrics_port)
        except OSError:
            # Already started in this process
            pass

        start_tracing("dispatch-worker")
        self._tracer = get_tracer("dispatch-worker")

        connection = await connect(settings.rabbitmq_url)
        async with connection:
            channel = await connection.channel()
            await channel.set_qos(prefetch_count=settings.prefetch_count)
            await declare_events_topology(channel, settings.events_queue, settings.retry_delays_ms)
            self.channel = channel

            if self.router is None:
                ctx = build_context(settings, channel)
                self.router = EventRouter(ctx)
                self.store = ctx.store

            queue = await channel.get_queue(work_queue_name(settings.events_queue))
            logger.info("Worker consuming %s", queue.name)
            await queue.consume(self._on_message, no_ack=False)

            await self._stopping.wait()
        await dispose_engine()

    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        async with self._sem:
            async with message.process(requeue=False):
                await self.process(message.body, message.headers)

    async def process(self, body: bytes, headers: Optional[Mapping[str, Any]] = None) -> str:
        """Handle one raw delivery and return its outcome label."""
        assert self.router is not None
        start_ts = time.perf_counter()
        try:
            payload = json.loads(body)
            if not isinstance(payload, dict):
                raise ValueError("queue event must be a JSON object")
        except ValueError as exc:
            logger.error("undecodable event body: %s", exc)
            await self._dead_letter({"raw": body.decode("utf-8", "replace")}, exc, can_replay=False)
            return c.RESULT_DEAD_LETTER

        stamp_dispatch_key(payload)
        action = str(payload.get("action") or "unknown")
        trace_ctx = extract_context_from_headers(headers)
        token = context.attach(trace_ctx)
        try:
            with self._tracer.start_as_current_span("process") as span:
                span.set_attribute("action", action)
                span.set_attribute("dispatch_key", payload["dispatch_key"])
                await self.router.route(payload)
            WORKER_EVENT_TOTAL.labels(status=c.RESULT_SUCCESS, action=action).inc()
            return c.RESULT_SUCCESS
        except Exception as exc:  # noqa: BLE001
            return await self._on_failure(payload, action, exc)
        finally:
            context.detach(token)
            WORKER_PROCESS_LATENCY_SECONDS.observe(time.perf_counter() - start_ts)

    async def _on_failure(self, payload: dict[str, Any], action: str, exc: Exception) -> str:
        settings = self.settings
        decision = decide_retry(payload, exc, settings.max_retries, settings.retry_delays_ms)

        if decision.outcome == "drop":
            if isinstance(exc, RejectedMessage):
                logger.info("%s rejected: %s", action, exc.reply)
            else:
                logger.error("%s dropped: %s", action, exc)
                reason = "unknown_action" if isinstance(exc, UnknownActionError) else decision.error_type
                CONFIGURATION_ERROR_TOTAL.labels(reason=reason).inc()
            WORKER_EVENT_TOTAL.labels(status=c.RESULT_DROPPED, action=action).inc()
            return c.RESULT_DROPPED

        if decision.should_retry:
            logger.warning(
                "%s failed (%s); retry %d/%d in %dms",
                action, decision.error_type, decision.next_retry_count, decision.max_retries, decision.delay_ms,
                exc_info=exc,
            )
            retry_payload = {**payload, "retry_count": decision.next_retry_count}
            assert self.channel is not None
            await schedule_retry(self.channel, settings.events_queue, retry_payload, delay_ms=decision.delay_ms)
            WORKER_RETRY_TOTAL.labels(action=action).inc()
            WORKER_EVENT_TOTAL.labels(status=c.RESULT_RETRY, action=action).inc()
            return c.RESULT_RETRY

        logger.error("%s failed terminally (%s)", action, decision.error_type, exc_info=exc)
        await self._dead_letter(payload, exc, can_replay=decision.error_type != "ValidationError")
        WORKER_EVENT_TOTAL.labels(status=c.RESULT_DEAD_LETTER, action=action).inc()
        return c.RESULT_DEAD_LETTER

    async def _dead_letter(self, payload: dict[str, Any], exc: Exception, can_replay: bool) -> None:
        action = payload.get("action")
        if self.channel is not None:
            await publish_to_dlq(self.channel, self.settings.events_queue, payload)
        WORKER_DLQ_TOTAL.labels(action=str(action or "unknown")).inc()
        if self.store is None:
            return
        record = DeadLetterRecord(
            action=action,
            original_event=payload,
            error={"type": exc.__class__.__name__, "message": str(exc)},
            can_replay=can_replay,
        )
        try:
            await self.store.record_dead_letter(record)
        except Exception:  # noqa: BLE001
            # The DLQ copy is authoritative; the table row is for operators
            logger.exception("failed to record dead letter for %s", action)

    def stop(self) -> None:
        """Signal the run loop to stop (used by signal handlers)."""
        self._stopping.set()


async def main() -> None:
    """Entrypoint for running a worker as a script."""
    settings = Settings()
    setup_logging(settings.log_level)
    worker = Worker(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
