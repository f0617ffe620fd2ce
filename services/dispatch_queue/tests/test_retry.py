from pydantic import ValidationError

from dispatch.errors import ConfigurationError, RejectedMessage, UnknownActionError
from dispatch.events import parse_event
from dispatch.retry import decide_retry, next_delay_ms


def test_next_delay_ms_bounds():
    delays = [1, 2, 4]
    assert next_delay_ms(0, delays) == 1
    assert next_delay_ms(2, delays) == 4
    assert next_delay_ms(3, delays) == 4  # clamp to last


def test_dependency_failure_is_retried_with_backoff():
    d = decide_retry({"action": "page", "retry_count": 1}, ConnectionError("db down"), delays=[100, 200, 400])
    assert d.should_retry
    assert d.delay_ms == 200
    assert d.next_retry_count == 2


def test_retries_exhausted_goes_to_dead_letter():
    d = decide_retry({"action": "page", "retry_count": 3}, RuntimeError("boom"), max_retries=3)
    assert d.outcome == "dead_letter"


def test_configuration_errors_and_rejections_are_dropped():
    assert decide_retry({}, ConfigurationError("no identity")).outcome == "drop"
    assert decide_retry({}, UnknownActionError("reboot")).outcome == "drop"
    assert decide_retry({}, RejectedMessage("Message sent to empty group")).outcome == "drop"


def test_malformed_event_is_dead_lettered_without_retry():
    try:
        parse_event({"action": "activate"})
    except ValidationError as exc:
        d = decide_retry({"action": "activate", "retry_count": 0}, exc)
    assert d.outcome == "dead_letter"
    assert d.error_type == "ValidationError"
