"""
Topology initializer.

- Declares the events exchange and work queue
- Declares the retry exchange and its delay queues (DLX back to the events exchange)
- Declares the DLX/DLQ for terminal failures

Supports a best-effort mode via ``--best-effort`` or ``INIT_TOPOLOGY_BEST_EFFORT=1``
which skips errors when RabbitMQ is not reachable.

Examples:
    python -m scripts.init_topology
    python -m scripts.init_topology --best-effort
"""

import argparse
import asyncio
import logging
import os

from dispatch.config import Settings
from dispatch.log import setup_logging
from dispatch.rabbit import connect, declare_events_topology


logger = logging.getLogger("dispatch.init_topology")


async def main(settings: Settings, best_effort: bool) -> None:
    """Declare the events topology for ``settings.events_queue``."""
    try:
        connection = await connect(settings.rabbitmq_url)
    except Exception as exc:  # noqa: BLE001
        if best_effort:
            logger.warning("Skipping: RabbitMQ not reachable (%s)", exc)
            return
        raise

    async with connection:
        try:
            channel = await connection.channel()
            await declare_events_topology(channel, settings.events_queue, settings.retry_delays_ms)
        except Exception as exc:  # noqa: BLE001
            if best_effort:
                logger.warning("Skipping declarations due to error: %s", exc)
                return
            raise
    logger.info("declared topology for %s", settings.events_queue)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Declare RabbitMQ topology for the dispatch events queue")
    parser.add_argument("--best-effort", action="store_true", help="Do not fail if RabbitMQ is unreachable")
    args = parser.parse_args()

    best_effort_env = os.getenv("INIT_TOPOLOGY_BEST_EFFORT", "false").lower() in {"1", "true", "yes"}
    settings = Settings()
    setup_logging(settings.log_level)
    asyncio.run(main(settings, bool(args.best_effort or best_effort_env)))
