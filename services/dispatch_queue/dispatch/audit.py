"""Audit records for outbound broadcasts.

One record per logical broadcast, keyed by its millisecond dispatch time.
The write sets every fixed field, so recording the same key again after a
redelivery overwrites rather than accumulates. Keys come from
:class:`KeyAllocator` so events handled in the same millisecond never share
one.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from dispatch.constants import DEPARTMENT_TYPES, KEYS_PER_EVENT
from dispatch.directory import DEFAULT_DEPARTMENT
from dispatch.formatting import now_ms
from dispatch.metrics import MESSAGE_INITIATED_TOTAL
from dispatch.models import TextRecord
from dispatch.store import Store


logger = logging.getLogger(__name__)


class KeyAllocator:
    """Hands out millisecond audit keys that never repeat within this process.

    Each key reserves a block of ``block`` consecutive values for the event
    it is given to; the next key starts after that block even when the clock
    has not moved.
    """

    def __init__(self, clock: Callable[[], int] = now_ms, block: int = KEYS_PER_EVENT) -> None:
        self._clock = clock
        self._block = block
        self._last = 0

    def allocate(self) -> int:
        key = max(self._clock(), self._last + self._block)
        self._last = key
        return key


_keys = KeyAllocator()


def allocate_key() -> int:
    return _keys.allocate()


def build_record(
    type: str,
    key: int,
    recipient_count: int,
    body: str,
    media: Sequence[str] = (),
    file_key: Optional[str] = None,
    topic: Optional[int] = None,
    department: Optional[str] = None,
    is_test: bool = False,
) -> TextRecord:
    if type in DEPARTMENT_TYPES and department is None:
        department = DEFAULT_DEPARTMENT
    is_page = file_key is not None
    return TextRecord(
        datetime=key,
        type=type,
        recipients=recipient_count,
        body=body,
        media_urls=list(media),
        is_page=is_page,
        is_test=is_test,
        test_page_index=("y" if is_test else "n") + ("y" if is_page else "n"),
        department=department,
        topic=topic,
        page_id=file_key,
    )


async def record(
    store: Store,
    type: str,
    key: int,
    recipient_count: int,
    body: str,
    media: Sequence[str] = (),
    file_key: Optional[str] = None,
    topic: Optional[int] = None,
    department: Optional[str] = None,
    is_test: bool = False,
) -> TextRecord:
    """Write the audit record for one broadcast and count its recipients."""
    text = build_record(type, key, recipient_count, body, media, file_key, topic, department, is_test)
    await store.put_text(text)
    MESSAGE_INITIATED_TOTAL.labels(type=type, test="y" if is_test else "n").inc(recipient_count)
    logger.info("recorded %s text %s for %d recipients", type, key, recipient_count)
    return text
