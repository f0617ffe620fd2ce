"""Classification of texts sent to one of our numbers.

The channel is the identity the text was sent to; the sender is looked up
by the number it came from. :func:`classify` is pure and decides one of:

- ``drop``: nothing to do (unknown or alert-only channel, noise)
- ``reply``: answer the sender only
- ``command``: toggle the sender's test flag and confirm
- ``broadcast``: relay to the resolved department

Checks run in this order: channel, membership, ambiguity, commands,
reserved ``!`` prefix, noise, group-text availability.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Mapping, Optional

from dispatch.composer import (
    REPLY_NO_GROUP_TEXT,
    REPLY_RESERVED_PREFIX,
    REPLY_TEST_DISABLED,
    REPLY_TEST_ENABLED,
    REPLY_USE_WEBSITE,
    compose_not_member,
)
from dispatch.directory import Department
from dispatch.identities import SendingIdentity
from dispatch.models import User


DecisionKind = Literal["drop", "reply", "command", "broadcast"]

COMMANDS: dict[str, tuple[bool, str]] = {
    "!startTest": (True, REPLY_TEST_ENABLED),
    "!endTest": (False, REPLY_TEST_DISABLED),
}

RESERVED_PREFIX = "!"

_REACTION_PREFIXES = ("Liked", "Loved", "Disliked", "Laughed at", "Questioned")
_QUOTED_REACTION_RE = re.compile(r" to “")


@dataclass(frozen=True)
class InboundDecision:
    kind: DecisionKind
    reason: str
    reply: Optional[str] = None
    department: Optional[str] = None
    is_announcement: bool = False
    include_sender: bool = False
    test_mode: Optional[bool] = None


def is_noise(body: str) -> bool:
    """Auto-replies and tapback reactions that should not be relayed.

    >>> is_noise("Liked “Engine 1 responding”")
    True
    >>> is_noise("Engine 1 responding")
    False
    """
    if "I'm Driving" in body and "Sent from My Car" in body:
        return True
    if body.startswith(_REACTION_PREFIXES):
        return True
    return bool(_QUOTED_REACTION_RE.search(body))


def channel_departments(channel: SendingIdentity, departments: Mapping[str, Department]) -> list[str]:
    """Departments served by the channel identity, in configuration order."""
    found = [
        dept.id
        for dept in departments.values()
        if channel.name in (dept.page_identity, dept.text_identity)
    ]
    if channel.department and channel.department not in found and channel.department in departments:
        found.append(channel.department)
    return found


def classify(
    channel: Optional[SendingIdentity],
    sender: Optional[User],
    body: str,
    departments: Mapping[str, Department],
) -> InboundDecision:
    if channel is None or channel.type not in ("page", "chat"):
        return InboundDecision("drop", "unknown_channel")

    channel_depts = channel_departments(channel, departments)
    if not channel_depts:
        return InboundDecision("drop", "unknown_channel")

    sender_depts = [d for d in channel_depts if sender is not None and sender.is_active_in(d)]
    if sender is None or not sender_depts:
        return InboundDecision("reply", "not_member", reply=compose_not_member(channel.department or channel_depts[0]))

    admin_depts = [d for d in sender_depts if sender.is_admin_in(d)]
    if channel.type == "page" and admin_depts:
        department, is_announcement, include_sender = admin_depts[0], True, True
        candidates = admin_depts
    elif channel.type == "page":
        department, is_announcement, include_sender = sender_depts[0], False, True
        candidates = sender_depts
    else:
        department, is_announcement, include_sender = sender_depts[0], False, False
        candidates = sender_depts

    if len(candidates) > 1:
        return InboundDecision("reply", "ambiguous", reply=REPLY_USE_WEBSITE)

    text = body.strip()
    if text in COMMANDS:
        test_mode, reply = COMMANDS[text]
        return InboundDecision("command", "command", reply=reply, test_mode=test_mode)

    if text.startswith(RESERVED_PREFIX):
        return InboundDecision("reply", "reserved_prefix", reply=REPLY_RESERVED_PREFIX)

    if is_noise(text):
        return InboundDecision("drop", "noise")

    dept = departments[department]
    if not is_announcement and dept.text_identity is None:
        return InboundDecision("reply", "no_group_text", reply=REPLY_NO_GROUP_TEXT, department=department)

    return InboundDecision(
        "broadcast",
        "announcement" if is_announcement else "peer",
        department=department,
        is_announcement=is_announcement,
        include_sender=include_sender,
    )
