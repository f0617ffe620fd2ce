import pytest

from conftest import FakeProvider, static_directory
from dispatch.dispatcher import Dispatcher, OutboundText


@pytest.mark.asyncio
async def test_one_failing_recipient_does_not_stop_the_batch(settings):
    provider = FakeProvider(fail_for={"5550000002"})
    dispatcher = Dispatcher(static_directory(), provider, settings)
    texts = [OutboundText(f"555000000{i}", "page", "hello") for i in range(1, 6)]

    results = await dispatcher.dispatch_many("queue", "page", 1700000000000, texts)

    assert sorted(provider.attempts) == [t.phone for t in texts]
    assert [r.outcome for r in results] == ["sent", "provider_error", "sent", "sent", "sent"]
    assert len(provider.sent) == 4


@pytest.mark.asyncio
async def test_unresolvable_identity_is_skipped_without_raising(settings, provider):
    dispatcher = Dispatcher(static_directory(), provider, settings)

    result = await dispatcher.dispatch("queue", "page", 1, "5550000001", "pageNowhere", "hello")

    assert result.outcome == "invalid_destination"
    assert provider.attempts == []


@pytest.mark.asyncio
async def test_identity_without_credentials_is_skipped(settings, provider):
    secret = {"phoneNumberalert": "+17195550002", "apiCode": "x"}
    dispatcher = Dispatcher(static_directory(secret), provider, settings)

    result = await dispatcher.dispatch("queue", "alert", 1, "5550000001", "alert", "hello")

    assert not result.ok
    assert provider.attempts == []


@pytest.mark.asyncio
async def test_status_callback_carries_key_and_api_code(settings, provider):
    dispatcher = Dispatcher(static_directory(), provider, settings)

    await dispatcher.dispatch("queue", "page", 1700000000123, "5550000001", "pageBaca", "hello", ["https://m/1"])
    await dispatcher.dispatch("queue", "reply", None, "5550000001", "pageBaca", "hi")

    first, second = provider.sent
    assert first.from_ == "+17195550006"
    assert first.status_callback == "https://example.test/api/v2/twilio/1700000000123/?code=code123"
    assert first.media_urls == ["https://m/1"]
    assert second.status_callback is None
