"""Retry policy for failed queue events.

The whole event is the unit of retry: per-recipient send failures never
reach here because the dispatcher isolates them.

- Validation errors (malformed events) are never retried.
- Configuration errors and business-rule rejections are dropped.
- Anything else is a dependency failure, retried with exponential backoff
  until ``max_retries``, then dead-lettered.

Examples
--------
>>> next_delay_ms(0, [1000, 2000, 4000])
1000
>>> d = decide_retry({"action": "page", "retry_count": 0}, RuntimeError("db down"), max_retries=3)
>>> (d.outcome, d.delay_ms, d.next_retry_count)
('retry', 1000, 1)
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import List, Literal, Optional

from pydantic import ValidationError

from dispatch.constants import DEFAULT_RETRY_DELAYS_MS
from dispatch.errors import ConfigurationError, RejectedMessage


RetryOutcome = Literal["retry", "dead_letter", "drop"]


def next_delay_ms(retry_count: int, delays: List[int] | None = None, jitter: float = 0.0) -> int:
    """Return the backoff delay for a zero-based ``retry_count``.

    Clamped to the last delay when ``retry_count`` runs past the sequence.

    >>> next_delay_ms(5, [100, 200, 400])
    400
    """
    if not delays:
        delays = DEFAULT_RETRY_DELAYS_MS
    idx = max(min(retry_count, len(delays) - 1), 0)
    base = delays[idx]
    if jitter <= 0:
        return int(base)
    delta = base * jitter
    return int(random.uniform(base - delta, base + delta))


def _is_validation_error(exc: Exception) -> bool:
    return isinstance(exc, ValidationError) or exc.__class__.__name__ == "ValidationError"


@dataclass
class RetryDecision:
    """Decision computed for a failed event.

    Attributes
    ----------
    outcome: str
        "retry" | "dead_letter" | "drop".
    delay_ms: int
        Delay before redelivery; 0 unless retrying.
    next_retry_count: int
        The ``retry_count`` to persist on the republished event.
    max_retries: int
        Effective bound used for this decision.
    error_type: str
        Exception class name used for classification.
    """
    outcome: RetryOutcome
    delay_ms: int
    next_retry_count: int
    max_retries: int
    error_type: str

    @property
    def should_retry(self) -> bool:
        return self.outcome == "retry"


def decide_retry(
    event: dict,
    exc: Optional[Exception],
    max_retries: int = 3,
    delays: Optional[List[int]] = None,
) -> RetryDecision:
    """Decide what to do with an event whose handler raised ``exc``."""
    retry_count = int(event.get("retry_count", 0) or 0)
    error_type = exc.__class__.__name__ if exc is not None else "Exception"

    if exc is not None and isinstance(exc, (ConfigurationError, RejectedMessage)):
        return RetryDecision("drop", 0, retry_count, max_retries, error_type)
    if exc is not None and _is_validation_error(exc):
        return RetryDecision("dead_letter", 0, retry_count, max_retries, error_type)
    if retry_count >= max_retries:
        return RetryDecision("dead_letter", 0, retry_count, max_retries, error_type)

    delay = next_delay_ms(retry_count, delays)
    return RetryDecision("retry", delay, retry_count + 1, max_retries, error_type)
