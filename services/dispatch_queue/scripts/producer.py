"""
Simple producer script.

- Builds a queue event from command-line arguments (or a JSON document)
- Validates it against the event models before publishing
- Publishes to the events exchange with trace context in the AMQP headers

Examples:
    python -m scripts.producer page --field key=BG_FIRE_VHF_20240101_120000.mp3 --field tg=18332 --field len=12
    python -m scripts.producer activate --field phone=5551234567 --field department=Crestone
    python -m scripts.producer --json '{"action": "login", "phone": "5551234567"}'
"""

import argparse
import asyncio
import json
import logging
from typing import Any, Sequence

from dispatch.config import Settings
from dispatch.events import parse_event
from dispatch.log import setup_logging
from dispatch.rabbit import connect, declare_events_topology, publish_event
from dispatch.tracing import get_tracer, inject_headers, start_tracing


logger = logging.getLogger("dispatch.producer")


def _coerce(value: str) -> Any:
    try:
        return json.loads(value)
    except ValueError:
        return value


def build_event(action: str | None, fields: Sequence[str], raw_json: str | None) -> dict[str, Any]:
    """Assemble the event payload; ``key=value`` fields are JSON-decoded when possible.

    >>> build_event("page", ["key=x.mp3", "tg=8332"], None)
    {'action': 'page', 'key': 'x.mp3', 'tg': 8332}
    """
    event: dict[str, Any] = json.loads(raw_json) if raw_json else {}
    if action:
        event["action"] = action
    for item in fields:
        name, sep, value = item.partition("=")
        if not sep:
            raise ValueError(f"field must be name=value: {item!r}")
        event[name] = _coerce(value)
    return event


async def main(event: dict[str, Any]) -> None:
    """Validate and publish one event."""
    settings = Settings()
    start_tracing("dispatch-producer")
    tracer = get_tracer("dispatch-producer")

    # Raise on an unknown action or malformed body before touching the broker
    parse_event(event)

    connection = await connect(settings.rabbitmq_url)
    async with connection:
        channel = await connection.channel(publisher_confirms=True)
        await declare_events_topology(channel, settings.events_queue, settings.retry_delays_ms)
        with tracer.start_as_current_span("publish") as span:
            span.set_attribute("action", event["action"])
            await publish_event(channel, settings.events_queue, event, headers=inject_headers())
    logger.info("published %s to %s", event["action"], settings.events_queue)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Publish a dispatch queue event")
    parser.add_argument("action", nargs="?", help="Event action, e.g. page, activate, announce")
    parser.add_argument("--field", action="append", default=[], help="Event field as name=value (repeatable)")
    parser.add_argument("--json", dest="raw_json", help="Full event as a JSON object")
    args = parser.parse_args()

    setup_logging(Settings().log_level)
    asyncio.run(main(build_event(args.action, args.field, args.raw_json)))
