"""SQLAlchemy ORM models for subscribers, text audit records, and page files.

Tables:
- ``users``: subscribers keyed by 10-digit phone; department memberships and
  topic subscriptions are JSONB
- ``texts``: one row per logical broadcast keyed by its millisecond send time;
  delivery outcomes accumulate in parallel JSONB lists
- ``files``: recorded radio transmissions per talkgroup
- ``file_translations``: old file key -> new key after a recording is renamed
- ``dead_letters``: queue events that exhausted their retries
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class UserRow(Base):
    __tablename__ = "users"

    phone: Mapped[str] = mapped_column(String, primary_key=True)
    f_name: Mapped[str] = mapped_column(String, default="")
    l_name: Mapped[str] = mapped_column(String, default="")
    departments: Mapped[dict] = mapped_column(JSONB, default=dict)
    topics: Mapped[list] = mapped_column(JSONB, default=list)
    paging_phone: Mapped[str | None] = mapped_column(String, nullable=True)
    get_transcript: Mapped[bool] = mapped_column(Boolean, default=False)
    get_transcript_only: Mapped[bool] = mapped_column(Boolean, default=False)
    get_api_alerts: Mapped[bool] = mapped_column(Boolean, default=False)
    get_vhf_alerts: Mapped[bool] = mapped_column(Boolean, default=False)
    get_dtr_alerts: Mapped[bool] = mapped_column(Boolean, default=False)
    is_district_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    is_test: Mapped[bool] = mapped_column(Boolean, default=False)
    last_status: Mapped[str | None] = mapped_column(String, nullable=True)
    last_status_count: Mapped[int] = mapped_column(Integer, default=0)
    code: Mapped[str | None] = mapped_column(String, nullable=True)
    code_expiry: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class TextRow(Base):
    __tablename__ = "texts"

    datetime: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    type: Mapped[str] = mapped_column(String, index=True)
    recipients: Mapped[int] = mapped_column(Integer, default=0)
    body: Mapped[str] = mapped_column(Text, default="")
    media_urls: Mapped[list] = mapped_column(JSONB, default=list)
    is_page: Mapped[bool] = mapped_column(Boolean, default=False)
    is_test: Mapped[bool] = mapped_column(Boolean, default=False)
    test_page_index: Mapped[str] = mapped_column(String, index=True, default="nn")
    department: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    topic: Mapped[int | None] = mapped_column(Integer, nullable=True)
    page_id: Mapped[str | None] = mapped_column(String, nullable=True)
    from_number: Mapped[str | None] = mapped_column(String, nullable=True)
    sent: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    sent_phone: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    delivered: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    delivered_phone: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    undelivered: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    undelivered_phone: Mapped[list | None] = mapped_column(JSONB, nullable=True)


class FileRow(Base):
    __tablename__ = "files"

    topic: Mapped[int] = mapped_column(Integer, primary_key=True)
    added: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    key: Mapped[str] = mapped_column(String, index=True)
    tone: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)


class FileTranslationRow(Base):
    __tablename__ = "file_translations"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    new_key: Mapped[str] = mapped_column(String)


class DeadLetterRow(Base):
    __tablename__ = "dead_letters"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    action: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    original_event: Mapped[dict] = mapped_column(JSONB)
    error: Mapped[dict] = mapped_column(JSONB)
    can_replay: Mapped[bool] = mapped_column(Boolean, default=True)
    dlq_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
