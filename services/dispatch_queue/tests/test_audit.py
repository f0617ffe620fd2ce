import pytest

from conftest import InMemoryStore
from dispatch import audit
from dispatch.directory import DEFAULT_DEPARTMENT


@pytest.mark.asyncio
async def test_recording_same_key_twice_does_not_double_recipients():
    store = InMemoryStore()
    await audit.record(store, "page", 1700000000000, 12, "FIRE PAGE", file_key="a.mp3", topic=8332)
    await audit.record(store, "page", 1700000000000, 12, "FIRE PAGE", file_key="a.mp3", topic=8332)

    assert len(store.texts) == 1
    assert store.texts[1700000000000].recipients == 12


@pytest.mark.asyncio
async def test_rewrite_keeps_delivery_outcomes():
    store = InMemoryStore()
    await audit.record(store, "account", 1, 1, "hello")
    await store.append_text_outcome(1, "delivered", 5, "5550000001")
    await audit.record(store, "account", 1, 1, "hello")

    assert store.texts[1].delivered == [5]
    assert store.texts[1].delivered_phone == ["5550000001"]


def test_build_record_flags():
    page = audit.build_record("page", 1, 3, "b", file_key="a.mp3", is_test=True)
    assert page.is_page and page.page_id == "a.mp3"
    assert page.test_page_index == "yy"

    text = audit.build_record("department-text", 2, 3, "b")
    assert text.department == DEFAULT_DEPARTMENT
    assert text.test_page_index == "nn"


def test_keys_in_the_same_millisecond_leave_room_for_follow_up_records():
    keys = audit.KeyAllocator(clock=lambda: 1700000000000)

    first, second = keys.allocate(), keys.allocate()

    assert first == 1700000000000
    assert second == first + 3


def test_keys_follow_the_clock_once_it_passes_the_reserved_block():
    ticks = iter([1700000000000, 1700000000500])
    keys = audit.KeyAllocator(clock=lambda: next(ticks))

    assert keys.allocate() == 1700000000000
    assert keys.allocate() == 1700000000500
