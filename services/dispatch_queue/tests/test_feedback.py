import pytest

from conftest import InMemoryStore, make_user
from dispatch.events import parse_event
from dispatch.feedback import handle_status, next_failure_count, should_escalate


def status_event(status, key=1700000000000, to="+15550000001"):
    return parse_event({"action": "inbound-status", "key": key, "MessageStatus": status, "To": to, "From": "+17195550001"})


def test_counter_sequence():
    prev_status, count, seen = None, 0, []
    for status in ["delivered", "undelivered", "undelivered", "delivered"]:
        count = next_failure_count(prev_status, count, status)
        prev_status = status
        seen.append(count)
    assert seen == [0, 1, 2, 0]


def test_other_statuses_leave_counter_alone():
    assert next_failure_count("undelivered", 4, "sent") == 4


def test_escalation_only_on_multiples_of_ten():
    assert [n for n in range(1, 31) if should_escalate("undelivered", n)] == [10, 20, 30]
    assert not should_escalate("delivered", 10)


@pytest.mark.asyncio
async def test_ten_undelivered_callbacks_raise_exactly_one_alert(make_ctx, publisher):
    store = InMemoryStore([make_user("5550000001", {"Crestone": {}, "Baca": {}})])
    ctx = make_ctx(store)

    for i in range(10):
        await handle_status(ctx, status_event("undelivered", key=1700000000000 + i))

    assert store.users["5550000001"].last_status_count == 10
    assert len(publisher.events) == 1
    alert = publisher.events[0]
    assert alert["action"] == "phone-issue"
    assert alert["count"] == 10
    assert alert["number"] == "5550000001"
    assert alert["departments"] == ["Baca", "Crestone"]


@pytest.mark.asyncio
async def test_status_appends_outcome_to_audit_record(make_ctx):
    store = InMemoryStore([make_user("5550000001")])
    ctx = make_ctx(store)

    await handle_status(ctx, status_event("sent"))
    await handle_status(ctx, status_event("delivered"))

    record = store.texts[1700000000000]
    assert record.sent_phone == ["5550000001"]
    assert record.delivered_phone == ["5550000001"]
    assert record.from_number == "+17195550001"
    assert store.users["5550000001"].last_status == "delivered"


@pytest.mark.asyncio
async def test_status_for_unknown_user_is_ignored(make_ctx, publisher):
    store = InMemoryStore()
    await handle_status(make_ctx(store), status_event("undelivered"))
    assert store.texts == {}
    assert publisher.events == []
