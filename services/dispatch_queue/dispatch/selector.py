"""Sending-identity selection per recipient.

Pages, announcements and account texts go out from a page identity:

1. A user active in exactly one department gets that department's page
   identity when it is configured, otherwise the global default.
2. Otherwise an explicit ``paging_phone`` preference wins when it names one
   of the user's active departments with a configured page identity.
3. Otherwise (no departments, or several without a usable preference) the
   global default identity is used.

Department chat goes out from the department's chat identity instead; see
:func:`chat_identity`.
"""
from __future__ import annotations

from typing import Mapping

from dispatch.directory import Department
from dispatch.identities import DEFAULT_PAGE_IDENTITY, IdentityCatalog
from dispatch.models import User


def select_identity(
    user: User,
    departments: Mapping[str, Department],
    catalog: IdentityCatalog,
) -> str:
    active = user.active_departments()

    if len(active) == 1:
        dept = departments.get(active[0])
        if dept is not None and dept.page_identity in catalog:
            return dept.page_identity
        return DEFAULT_PAGE_IDENTITY

    if user.paging_phone and user.paging_phone in active:
        dept = departments.get(user.paging_phone)
        if dept is not None and dept.page_identity in catalog:
            return dept.page_identity

    return DEFAULT_PAGE_IDENTITY


def chat_identity(department: Department) -> str:
    return department.channel_identity()
