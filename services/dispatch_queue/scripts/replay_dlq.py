"""
Replay dead-lettered events back into the events exchange.

Reads candidates from the ``dead_letters`` table (optionally filtered by action
and time window), resets ``retry_count`` and republishes them. The event's
``dispatch_key`` is kept, so a replayed broadcast rewrites its original audit
record.

Usage examples:
- Preview the oldest 10 replayable events:
  python -m scripts.replay_dlq --limit 10 --dry-run

- Replay page events since a timestamp:
  python -m scripts.replay_dlq --action page --since 2024-01-01T00:00:00 --limit 50
"""

import argparse
import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select

from dispatch.config import Settings
from dispatch.db import get_session
from dispatch.log import setup_logging
from dispatch.orm_models import DeadLetterRow
from dispatch.rabbit import connect, publish_event


logger = logging.getLogger("dispatch.replay_dlq")


def prepare_replay(event: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``event`` ready to republish.

    >>> prepare_replay({"action": "page", "retry_count": 3, "dispatch_key": 1})
    {'action': 'page', 'retry_count': 0, 'dispatch_key': 1}
    """
    replay = dict(event)
    replay["retry_count"] = 0
    return replay


async def load_candidates(limit: int, action: Optional[str], since: Optional[str], until: Optional[str]) -> list[Any]:
    query = select(DeadLetterRow.id, DeadLetterRow.original_event).where(DeadLetterRow.can_replay.is_(True))
    if action:
        query = query.where(DeadLetterRow.action == action)
    if since:
        query = query.where(DeadLetterRow.dlq_timestamp >= datetime.fromisoformat(since))
    if until:
        query = query.where(DeadLetterRow.dlq_timestamp <= datetime.fromisoformat(until))
    query = query.order_by(DeadLetterRow.dlq_timestamp.asc()).limit(limit)
    async with get_session() as session:
        res = await session.execute(query)
        return list(res.all())


async def replay(limit: int, *, dry_run: bool, action: Optional[str], since: Optional[str], until: Optional[str]) -> None:
    """Republish eligible dead letters, oldest first."""
    rows = await load_candidates(limit, action, since, until)
    if not rows:
        logger.info("No dead letters found")
        return

    if dry_run:
        for row_id, event in rows:
            logger.info("would replay #%s %s (key %s)", row_id, event.get("action"), event.get("dispatch_key"))
        return

    settings = Settings()
    connection = await connect(settings.rabbitmq_url)
    async with connection:
        channel = await connection.channel()
        total = len(rows)
        for idx, (row_id, event) in enumerate(rows, start=1):
            await publish_event(channel, settings.events_queue, prepare_replay(event))
            logger.info("[%d/%d] Replayed #%s %s", idx, total, row_id, event.get("action"))


def main() -> None:
    parser = argparse.ArgumentParser(description="Replay dead-lettered dispatch events")
    parser.add_argument("--limit", type=int, default=1)
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--action", help="Filter by event action")
    parser.add_argument("--since", help="ISO timestamp lower bound (inclusive)")
    parser.add_argument("--until", help="ISO timestamp upper bound (inclusive)")
    args = parser.parse_args()

    setup_logging(Settings().log_level)
    asyncio.run(replay(args.limit, dry_run=args.dry_run, action=args.action, since=args.since, until=args.until))


if __name__ == "__main__":
    main()
