"""Delivery-status feedback loop.

Each provider status callback appends to the audit record's outcome list for
that status and updates the recipient's consecutive-failure counter:

- ``delivered`` resets the counter to 0
- ``undelivered`` increments it when the previous status was also
  ``undelivered`` and restarts it at 1 otherwise
- any other status leaves the counter alone

Every tenth consecutive failure publishes a ``phone-issue`` escalation.

The counter update is a read followed by a write; concurrent callbacks for
the same user can under-count.
"""
from __future__ import annotations

import logging
from typing import Optional

from dispatch import constants as c
from dispatch.context import DispatchContext
from dispatch.events import InboundStatusEvent
from dispatch.formatting import now_ms
from dispatch.metrics import DELIVERY_STATUS_DELAY_SECONDS, DELIVERY_STATUS_TOTAL, ESCALATION_TOTAL
from dispatch.models import User


logger = logging.getLogger(__name__)


def next_failure_count(prev_status: Optional[str], prev_count: int, status: str) -> int:
    """
    >>> next_failure_count("delivered", 0, "undelivered")
    1
    >>> next_failure_count("undelivered", 1, "undelivered")
    2
    >>> next_failure_count("undelivered", 2, "delivered")
    0
    """
    if status == c.STATUS_DELIVERED:
        return 0
    if status == c.STATUS_UNDELIVERED:
        return prev_count + 1 if prev_status == c.STATUS_UNDELIVERED else 1
    return prev_count


def should_escalate(status: str, count: int) -> bool:
    return status == c.STATUS_UNDELIVERED and count > 0 and count % c.ESCALATION_EVERY == 0


def escalation_event(user: User, count: int) -> dict:
    return {
        "action": c.ACTION_PHONE_ISSUE,
        "count": count,
        "name": user.full_name,
        "number": user.phone,
        "departments": sorted(user.departments),
    }


async def handle_status(ctx: DispatchContext, event: InboundStatusEvent) -> None:
    received_at = event.event_time or now_ms()
    status = event.status

    DELIVERY_STATUS_TOTAL.labels(status=status).inc()
    DELIVERY_STATUS_DELAY_SECONDS.labels(status=status).observe(max(0, received_at - event.key) / 1000)

    user = await ctx.store.get_user(event.to)
    if user is None:
        logger.error("status callback for unknown user %s (text %s)", event.to, event.key)
        return

    if status in c.OUTCOME_STATUSES:
        await ctx.store.append_text_outcome(event.key, status, received_at, user.phone, event.from_number)

    if status not in (c.STATUS_DELIVERED, c.STATUS_UNDELIVERED):
        return

    count = next_failure_count(user.last_status, user.last_status_count, status)
    await ctx.store.update_user(user.phone, last_status=status, last_status_count=count)

    if should_escalate(status, count):
        ESCALATION_TOTAL.inc()
        logger.warning("%s has %d undelivered texts in a row; alerting admins", user.phone, count)
        if ctx.publisher is None:
            logger.error("no publisher configured; escalation for %s not sent", user.phone)
            return
        await ctx.publisher.publish(escalation_event(user, count))
