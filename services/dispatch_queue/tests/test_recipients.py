import pytest

from conftest import InMemoryStore, make_user
from dispatch.recipients import ALL, filter_recipients, resolve


def test_department_and_topic_scoping():
    member = make_user("5550000001", {"Crestone": {}}, topics=[8332])
    users = [member]

    assert filter_recipients(users, "Baca", None, False) == []
    assert filter_recipients(users, ALL, 18331, False) == []
    assert filter_recipients(users, "Crestone", 8332, False) == [member]


def test_inactive_membership_is_excluded():
    lapsed = make_user("5550000002", {"Crestone": {"active": False}})
    assert filter_recipients([lapsed], "Crestone", None, False) == []


def test_test_mode_only_reaches_test_users_but_live_reaches_everyone():
    tester = make_user("5550000001", {"Crestone": {}}, is_test=True)
    normal = make_user("5550000002", {"Crestone": {}})

    assert filter_recipients([tester, normal], "Crestone", None, True) == [tester]
    assert filter_recipients([tester, normal], "Crestone", None, False) == [tester, normal]


def test_result_is_deduplicated_and_ordered():
    a = make_user("5550000009", {"Crestone": {}})
    b = make_user("5550000001", {"Crestone": {}})
    assert [u.phone for u in filter_recipients([a, b, a], ALL, None, False)] == ["5550000001", "5550000009"]


@pytest.mark.asyncio
async def test_resolve_adds_testing_user_in_test_mode_only():
    store = InMemoryStore([make_user("5550000001", {"Crestone": {}}, is_test=True)])

    test_run = await resolve(store, "Crestone", None, True, testing_user="5559999999")
    live_run = await resolve(store, "Crestone", None, False, testing_user="5559999999")

    assert [u.phone for u in test_run] == ["5550000001", "5559999999"]
    assert [u.phone for u in live_run] == ["5550000001"]


@pytest.mark.asyncio
async def test_resolve_all_ignores_department_membership():
    store = InMemoryStore([
        make_user("5550000001", {"Crestone": {}}, topics=[8332]),
        make_user("5550000002", {}, topics=[8332]),
        make_user("5550000003", {"Baca": {}}, topics=[18331]),
    ])
    recipients = await resolve(store, ALL, 8332, False)
    assert [u.phone for u in recipients] == ["5550000001", "5550000002"]
