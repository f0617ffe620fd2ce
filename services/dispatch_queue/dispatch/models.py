"""Typed records exchanged with the store.

Nothing outside ``dispatch.store`` sees database rows; handlers, the
resolver, and the composer work only with these models.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Membership(BaseModel):
    """A user's standing in one department."""
    model_config = ConfigDict(extra="ignore")

    active: bool = False
    admin: bool = False
    call_sign: Optional[str] = None


class User(BaseModel):
    """A subscriber, keyed by 10-digit phone number."""
    model_config = ConfigDict(extra="ignore")

    phone: str
    f_name: str = ""
    l_name: str = ""
    departments: dict[str, Membership] = Field(default_factory=dict)
    topics: list[int] = Field(default_factory=list)
    paging_phone: Optional[str] = None

    get_transcript: bool = False
    get_transcript_only: bool = False
    get_api_alerts: bool = False
    get_vhf_alerts: bool = False
    get_dtr_alerts: bool = False

    is_district_admin: bool = False
    is_test: bool = False

    last_status: Optional[str] = None
    last_status_count: int = 0

    code: Optional[str] = None
    code_expiry: Optional[int] = None

    @property
    def full_name(self) -> str:
        return f"{self.f_name} {self.l_name}".strip()

    def membership(self, department: str) -> Optional[Membership]:
        return self.departments.get(department)

    def is_active_in(self, department: str) -> bool:
        m = self.departments.get(department)
        return m is not None and m.active

    def is_admin_in(self, department: str) -> bool:
        m = self.departments.get(department)
        return m is not None and m.active and m.admin

    def active_departments(self) -> list[str]:
        return [dept for dept, m in self.departments.items() if m.active]

    def call_sign(self, department: str) -> Optional[str]:
        m = self.departments.get(department)
        return m.call_sign if m is not None else None

    def display_name(self, department: str) -> str:
        """``First Last (callsign)``, dropping the call sign when there is none."""
        cs = self.call_sign(department)
        return f"{self.full_name} ({cs})" if cs else self.full_name


class TextRecord(BaseModel):
    """Audit record of one logical broadcast, keyed by its millisecond send time."""
    model_config = ConfigDict(extra="ignore")

    datetime: int
    type: str
    recipients: int
    body: str
    media_urls: list[str] = Field(default_factory=list)
    is_page: bool = False
    is_test: bool = False
    test_page_index: str = "nn"
    department: Optional[str] = None
    topic: Optional[int] = None
    page_id: Optional[str] = None
    from_number: Optional[str] = None

    sent: list[int] = Field(default_factory=list)
    sent_phone: list[str] = Field(default_factory=list)
    delivered: list[int] = Field(default_factory=list)
    delivered_phone: list[str] = Field(default_factory=list)
    undelivered: list[int] = Field(default_factory=list)
    undelivered_phone: list[str] = Field(default_factory=list)


class FileRecord(BaseModel):
    """A recorded radio transmission."""
    model_config = ConfigDict(extra="ignore")

    key: str
    topic: int
    added: int
    tone: bool = False
    transcript: Optional[str] = None


class DeadLetterRecord(BaseModel):
    """Row for the ``dead_letters`` table for terminal event failures."""
    model_config = ConfigDict(extra="allow")

    action: Optional[str] = None
    original_event: dict
    error: dict
    can_replay: bool = True
