"""Recipient resolution for broadcasts.

``scope`` is a department id or :data:`ALL`. With a department, only users
active in it qualify. A topic further limits recipients to its subscribers.
Test mode keeps only test users; live mode applies no test filter at all, so
test users receive live broadcasts too.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from dispatch.models import User
from dispatch.store import Store


logger = logging.getLogger(__name__)

ALL = "all"


def filter_recipients(
    users: Iterable[User],
    scope: str,
    topic: Optional[int],
    test_mode: bool,
) -> list[User]:
    """Pure recipient filter; result is de-duplicated and ordered by phone."""
    selected: dict[str, User] = {}
    for user in users:
        if scope != ALL and not user.is_active_in(scope):
            continue
        if topic is not None and int(topic) not in user.topics:
            continue
        if test_mode and not user.is_test:
            continue
        selected.setdefault(user.phone, user)
    return [selected[phone] for phone in sorted(selected)]


async def resolve(
    store: Store,
    scope: str,
    topic: Optional[int],
    test_mode: bool,
    testing_user: Optional[str] = None,
) -> list[User]:
    """Load candidates from the store and apply :func:`filter_recipients`.

    In test mode the configured testing user is always included, even when it
    has no stored profile.
    """
    users = await store.list_users(None if scope == ALL else scope)
    recipients = filter_recipients(users, scope, topic, test_mode)
    if test_mode and testing_user and all(u.phone != testing_user for u in recipients):
        recipients.append(User(phone=testing_user, is_test=True))
    logger.debug("resolved %d recipients scope=%s topic=%s test=%s", len(recipients), scope, topic, test_mode)
    return recipients
