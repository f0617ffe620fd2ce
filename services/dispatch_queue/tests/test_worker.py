import asyncio
import json
from types import SimpleNamespace

import pytest

import scripts.worker as worker_module
from conftest import InMemoryStore, make_user
from dispatch.errors import ConfigurationError
from dispatch.router import EventRouter
from scripts.worker import Worker, stamp_dispatch_key


class RecordingRouter:
    def __init__(self, exc=None):
        self.exc = exc
        self.payloads = []

    async def route(self, raw):
        self.payloads.append(dict(raw))
        if self.exc is not None:
            raise self.exc


def body(payload):
    return json.dumps(payload).encode("utf-8")


@pytest.fixture
def published(monkeypatch):
    calls = SimpleNamespace(retries=[], dead=[])

    async def fake_schedule_retry(channel, queue, event, delay_ms, headers=None):
        calls.retries.append((dict(event), delay_ms))

    async def fake_publish_to_dlq(channel, queue, event, headers=None):
        calls.dead.append(dict(event))

    monkeypatch.setattr(worker_module, "schedule_retry", fake_schedule_retry)
    monkeypatch.setattr(worker_module, "publish_to_dlq", fake_publish_to_dlq)
    return calls


def make_worker(settings, router, store=None):
    w = Worker(settings.model_copy(update={"retry_delays_ms": [100, 200]}), router=router, store=store)
    w.channel = object()
    return w


def test_dispatch_key_is_stamped_once():
    payload = stamp_dispatch_key({"action": "page"})
    key = payload["dispatch_key"]
    assert stamp_dispatch_key(payload)["dispatch_key"] == key


@pytest.mark.asyncio
async def test_success_routes_stamped_event(settings, published):
    router = RecordingRouter()
    outcome = await make_worker(settings, router).process(body({"action": "page", "key": "k", "tg": 8332}))

    assert outcome == "success"
    assert router.payloads[0]["dispatch_key"] > 0
    assert published.retries == [] and published.dead == []


@pytest.mark.asyncio
async def test_dependency_failure_schedules_retry_with_same_key(settings, published):
    router = RecordingRouter(ConnectionError("db down"))
    await make_worker(settings, router).process(body({"action": "page", "dispatch_key": 42}))

    ((event, delay),) = published.retries
    assert delay == 100
    assert event["retry_count"] == 1
    assert event["dispatch_key"] == 42


@pytest.mark.asyncio
async def test_exhausted_retries_dead_letter_and_record(settings, published):
    store = InMemoryStore()
    router = RecordingRouter(ConnectionError("db down"))
    outcome = await make_worker(settings, router, store).process(body({"action": "page", "retry_count": 3}))

    assert outcome == "dead_letter"
    assert published.dead[0]["action"] == "page"
    (record,) = store.dead_letters
    assert record.error["type"] == "ConnectionError"
    assert record.can_replay is True


@pytest.mark.asyncio
async def test_configuration_error_is_dropped(settings, published):
    router = RecordingRouter(ConfigurationError("Invalid phone information - pageNowhere"))
    outcome = await make_worker(settings, router).process(body({"action": "activate"}))

    assert outcome == "dropped"
    assert published.retries == [] and published.dead == []


@pytest.mark.asyncio
async def test_undecodable_body_is_dead_lettered(settings, published):
    store = InMemoryStore()
    outcome = await make_worker(settings, RecordingRouter(), store).process(b"not json")

    assert outcome == "dead_letter"
    assert store.dead_letters[0].can_replay is False


@pytest.mark.asyncio
async def test_concurrent_events_get_their_own_audit_records(settings, published, make_ctx):
    store = InMemoryStore([
        make_user("5550000001", {"Crestone": {}}, topics=[8332]),
        make_user("5550000002", {"Baca": {}}, topics=[18331]),
    ])
    ctx = make_ctx(store)
    worker = make_worker(settings, EventRouter(ctx), store)

    outcomes = await asyncio.gather(
        worker.process(body({"action": "page", "key": "240101_120000", "tg": 8332})),
        worker.process(body({"action": "page", "key": "240101_120005", "tg": 18331})),
    )

    assert outcomes == ["success", "success"]
    assert len(store.texts) == 2
    assert {t.topic for t in store.texts.values()} == {8332, 18331}
    first, second = sorted(store.texts)
    assert second - first >= 3
