"""Small string and time helpers shared by the composer and handlers."""
from __future__ import annotations

import re
import secrets
import string
import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo


_DTR_FILE_RE = re.compile(r"\d{2,5}-(\d{10})_\d{9}(\.\d|)-call_\d+\.m4a")
_VHF_FILE_RE = re.compile(r"(SAG|BG)_FIRE_VHF_(\d{4})(\d{2})(\d{2})_(\d{2})(\d{2})(\d{2})\.mp3")

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_phone(phone: str | int) -> str:
    """Normalize a phone number to its 10 national digits.

    >>> parse_phone("+1 (555) 123-4567")
    '5551234567'
    """
    digits = re.sub(r"\D", "", str(phone))
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


def format_phone(phone: str | int) -> str:
    """Render ``5551234567`` as ``555-123-4567``; shorter inputs degrade gracefully."""
    value = str(phone)
    first, middle, last = value[0:3], value[3:6], value[6:10]
    if last:
        return f"{first}-{middle}-{last}"
    if middle:
        return f"{first}-{middle}"
    return first


def to_e164(phone: str | int) -> str:
    return f"+1{parse_phone(phone)}"


def file_key_to_datetime(file_key: str) -> datetime:
    """Return the recording time encoded in an audio file key.

    DTR recorder files carry epoch seconds, VHF recorder files carry a UTC
    timestamp. Anything else maps to the epoch.
    """
    dtr = _DTR_FILE_RE.search(file_key)
    if dtr is not None:
        return datetime.fromtimestamp(int(dtr.group(1)), tz=timezone.utc)
    vhf = _VHF_FILE_RE.search(file_key)
    if vhf is not None:
        year, month, day, hour, minute, second = (int(g) for g in vhf.groups()[1:])
        return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    return _EPOCH


def format_page_time(moment: datetime, time_zone: str) -> str:
    """``on Mon, Jan 01 at 13:05:09`` in the department's local time, 24h clock."""
    local = moment.astimezone(ZoneInfo(time_zone))
    return f"on {local.strftime('%a, %b %d')} at {local.strftime('%H:%M:%S')}"


def random_code(length: int, numeric: bool = False) -> str:
    alphabet = string.digits if numeric else string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))
