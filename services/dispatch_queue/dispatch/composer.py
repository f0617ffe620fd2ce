"""Message bodies, one pure function per message type.

Nothing here does I/O; callers pass in everything a body depends on.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Mapping, Optional, Sequence

from dispatch.directory import Department, Topic
from dispatch.formatting import file_key_to_datetime, format_page_time, format_phone


DEFAULT_LINK_BASE = "https://cofrn.org/"
DEFAULT_TIME_ZONE = "America/Denver"

WELCOME_PARTS = {
    "welcome": "Welcome to the {{name}} {{type}} group!",
    "textGroup": (
        "This number will be used to send and receive messages from other members of the department."
        "\n\nTo send a message to other members of your department, just send a text to this number. "
        "Any message you send will show up for others with your name and callsign attached."
        "\n\nYou will receive important announcements from {{pageNumber}}. "
        "No-one except department administrators will be able to send announcements from that number."
    ),
    "textPageGroup": (
        "This number will be used to send and receive messages from other members of the department."
        "\n\nIn a moment, you will receive a text from {{pageNumber}} with a link to a sample page similar "
        "to what you will receive. That number will only ever send you pages or important announcements."
        "\n\nTo send a message to other members of your department, just send a text to this number. "
        "Any message you send will show up for others with your name and callsign attached."
    ),
    "pageGroup": (
        "This number will be used to send pages or important announcements."
        "\n\nIn a moment, you will receive a text with a link to a sample page like that you will receive."
    ),
    "howToLeave": 'You can leave this group at any time by texting "STOP" to this number.',
}

_PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")

# Inbound text replies
REPLY_TEST_ENABLED = "Testing mode enabled"
REPLY_TEST_DISABLED = "Testing mode disabled"
REPLY_RESERVED_PREFIX = "Messages that begin with an exclamation mark are reserved for testing purposes"
REPLY_NO_GROUP_TEXT = "This department is not using the group text feature of this system"
REPLY_USE_WEBSITE = (
    "You are a member of more than one department using this number. "
    "Please use the website to send this message."
)

NO_VOICES = "No voices detected"


def _link(link_base: str, query: str) -> str:
    return f"{link_base.rstrip('/')}/?{query}"


def compose_page(
    file_key: str,
    topic_id: int,
    topics: Mapping[int, Topic],
    number: Optional[str] = None,
    transcript: Optional[str] = None,
    time_zone: str = DEFAULT_TIME_ZONE,
    link_base: str = DEFAULT_LINK_BASE,
    page_time: Optional[datetime] = None,
) -> str:
    """Page notification; ``number`` personalizes the link with a ``cs`` parameter.

    >>> from dispatch.directory import TOPICS
    >>> compose_page("BG_FIRE_VHF_20240101_190000.mp3", 8332, TOPICS).splitlines()[:2]
    ['FIRE PAGE', 'NSCFPD paged on Mon, Jan 01 at 12:00:00']
    """
    topic = topics.get(int(topic_id))
    if topic is None:
        return f"Invalid paging talkgroup - {topic_id} - {file_key}"

    moment = page_time or file_key_to_datetime(file_key)
    body = f"{topic.service} PAGE\n"
    body += f"{topic.party} paged {format_page_time(moment, time_zone)}\n"
    if transcript is not None:
        body += f"\n{transcript}\n\n"
    query = f"f={file_key}&tg={topic.link_preset}"
    if number is not None:
        query += f"&cs={number}"
    return body + _link(link_base, query)


def compose_transcript_notice(
    topic: Topic,
    transcript: str,
    link_base: str = DEFAULT_LINK_BASE,
) -> str:
    """Transcript with no associated file: plain notice plus a live traffic link."""
    return (
        f"Transcript for {topic.party} page:\n\n{transcript}\n\n"
        f"Current radio traffic: {_link(link_base, f'tg={topic.link_preset}')}"
    )


def welcome_group_type(department: Department, has_topics: bool) -> str:
    if department.is_page_only:
        return "page"
    return "textPage" if has_topics else "text"


def compose_welcome(
    department: Department,
    topic_labels: Sequence[str],
    page_number: str,
) -> str:
    """Welcome text sent when a membership is activated.

    ``page_number`` is the department page identity's number, already formatted.
    """
    group_type = welcome_group_type(department, len(topic_labels) > 0)
    pieces = [WELCOME_PARTS["welcome"], WELCOME_PARTS[f"{group_type}Group"]]
    if topic_labels:
        pieces.append(f"You will receive pages for: {', '.join(topic_labels)}")
    pieces.append(WELCOME_PARTS["howToLeave"])

    values = {"name": department.name, "type": department.type, "pageNumber": page_number}
    return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), "\n\n".join(pieces))


def compose_peer_message(sender_label: str, body: str) -> str:
    return f"{sender_label}: {body}"


def compose_announcement(label: str, body: str, sender_label: str) -> str:
    """``label`` is e.g. ``Crestone`` or ``NSCFPD Pages``; attribution is appended."""
    prefix = f"{label} Announcement" if label else "Announcement"
    return f"{prefix}: {body} - {sender_label}"


def compose_login_code(code: str) -> str:
    return f"This message was only sent to you. Your login code is {code}. This code expires in 5 minutes."


def compose_new_subscriber(first: str, last: str, phone: str, department_id: str) -> str:
    return (
        f"New subscriber: {first} {last} ({format_phone(phone)}) "
        f"has been added to the {department_id} group"
    )


def compose_phone_issue(name: str, number: str, count: int) -> str:
    return (
        f"Text delivery issue for {name} (number {format_phone(number)})"
        f"\n\nLast {count} messages have not been delivered."
    )


def compose_not_member(department_id: str) -> str:
    return f"You are not an active member of the {department_id} department"
