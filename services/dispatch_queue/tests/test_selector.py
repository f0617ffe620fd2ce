from conftest import SECRET, make_user
from dispatch.directory import DEPARTMENTS
from dispatch.identities import DEFAULT_PAGE_IDENTITY, build_catalog
from dispatch.selector import chat_identity, select_identity


CATALOG = build_catalog(SECRET)


def test_single_department_wins_over_stale_preference():
    user = make_user("5550000001", {"Baca": {}}, paging_phone="NSCAD")
    assert select_identity(user, DEPARTMENTS, CATALOG) == "pageBaca"
    # Same answer every time
    assert select_identity(user, DEPARTMENTS, CATALOG) == "pageBaca"


def test_single_department_without_configured_identity_uses_default():
    secret = {k: v for k, v in SECRET.items() if k != "phoneNumberSaguachepage"}
    user = make_user("5550000001", {"Saguache": {}})
    assert select_identity(user, DEPARTMENTS, build_catalog(secret)) == DEFAULT_PAGE_IDENTITY


def test_multi_department_preference():
    user = make_user("5550000001", {"Baca": {}, "NSCAD": {}}, paging_phone="NSCAD")
    assert select_identity(user, DEPARTMENTS, CATALOG) == "pageNSCAD"


def test_multi_department_preference_for_inactive_department_is_ignored():
    user = make_user("5550000001", {"Baca": {}, "NSCAD": {}, "Saguache": {"active": False}}, paging_phone="Saguache")
    assert select_identity(user, DEPARTMENTS, CATALOG) == DEFAULT_PAGE_IDENTITY


def test_no_departments_uses_default():
    assert select_identity(make_user("5550000001"), DEPARTMENTS, CATALOG) == DEFAULT_PAGE_IDENTITY


def test_chat_identity_falls_back_to_page_identity():
    assert chat_identity(DEPARTMENTS["Crestone"]) == "chatCrestone"
    assert chat_identity(DEPARTMENTS["Baca"]) == "pageBaca"
