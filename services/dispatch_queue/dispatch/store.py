"""Document store access for the dispatch engine.

``SqlStore`` is the only code that touches ORM rows. It maps them to the
typed records in :mod:`dispatch.models` on the way out and back on the way in.

Write semantics the handlers rely on:
- ``put_text`` sets every fixed field of an audit record and never touches
  its outcome lists, so writing the same record twice leaves it unchanged.
- ``append_text_outcome`` appends to one outcome list in a single upsert,
  creating a placeholder row if the status callback beats the audit write.
"""
from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from sqlalchemy import func, literal, select, update
from sqlalchemy.dialects.postgresql import JSONB, insert

from dispatch.constants import OUTCOME_STATUSES
from dispatch.db import get_session
from dispatch.models import DeadLetterRecord, FileRecord, Membership, TextRecord, User
from dispatch.orm_models import DeadLetterRow, FileRow, FileTranslationRow, TextRow, UserRow


logger = logging.getLogger(__name__)

# Renamed files can be renamed again; give up after this many hops
MAX_FILE_TRANSLATIONS = 10

_OUTCOME_FIELDS = {f for s in OUTCOME_STATUSES for f in (s, f"{s}_phone")}
_TEXT_FIXED_FIELDS = [c for c in TextRecord.model_fields if c not in _OUTCOME_FIELDS and c != "datetime"]
_USER_FIELDS = list(User.model_fields)


class Store(Protocol):
    async def get_user(self, phone: str) -> Optional[User]: ...

    async def list_users(self, department: Optional[str] = None) -> list[User]: ...

    async def update_user(self, phone: str, **fields: Any) -> Optional[User]: ...

    async def activate_membership(self, phone: str, department: str) -> Optional[User]: ...

    async def put_text(self, record: TextRecord) -> None: ...

    async def append_text_outcome(
        self, key: int, status: str, timestamp: int, phone: str, from_number: Optional[str] = None
    ) -> None: ...

    async def latest_tone_file(self, topic: int) -> Optional[FileRecord]: ...

    async def find_file(self, key: str) -> Optional[FileRecord]: ...

    async def set_file_transcript(self, file: FileRecord, transcript: str) -> None: ...

    async def record_dead_letter(self, record: DeadLetterRecord) -> None: ...


def user_from_row(row: UserRow) -> User:
    data = {name: getattr(row, name) for name in _USER_FIELDS}
    data["departments"] = {
        dept: Membership.model_validate(m) for dept, m in (row.departments or {}).items()
    }
    data["topics"] = [int(t) for t in (row.topics or [])]
    return User.model_validate(data)


def user_to_values(user: User) -> dict[str, Any]:
    values = user.model_dump()
    values["departments"] = {dept: m.model_dump() for dept, m in user.departments.items()}
    return values


def file_from_row(row: FileRow) -> FileRecord:
    return FileRecord(key=row.key, topic=row.topic, added=row.added, tone=row.tone, transcript=row.transcript)


class SqlStore:
    """PostgreSQL-backed :class:`Store`."""

    def __init__(self, session_factory=get_session) -> None:
        self._session = session_factory

    async def get_user(self, phone: str) -> Optional[User]:
        async with self._session() as session:
            row = await session.get(UserRow, phone)
            return user_from_row(row) if row is not None else None

    async def list_users(self, department: Optional[str] = None) -> list[User]:
        query = select(UserRow)
        if department is not None:
            query = query.where(UserRow.departments[department]["active"].as_boolean().is_(True))
        async with self._session() as session:
            result = await session.execute(query)
            return [user_from_row(row) for row in result.scalars().all()]

    async def update_user(self, phone: str, **fields: Any) -> Optional[User]:
        unknown = set(fields) - set(_USER_FIELDS)
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)}")
        async with self._session() as session:
            stmt = update(UserRow).where(UserRow.phone == phone).values(**fields).returning(UserRow)
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            await session.commit()
            return user_from_row(row) if row is not None else None

    async def activate_membership(self, phone: str, department: str) -> Optional[User]:
        """Mark ``phone`` active in ``department`` and clear any pending login code."""
        async with self._session() as session:
            result = await session.execute(select(UserRow).where(UserRow.phone == phone).with_for_update())
            row = result.scalar_one_or_none()
            if row is None:
                return None
            departments = dict(row.departments or {})
            membership = dict(departments.get(department) or {})
            membership["active"] = True
            departments[department] = membership
            row.departments = departments
            row.code = None
            row.code_expiry = None
            await session.commit()
            return user_from_row(row)

    async def put_text(self, record: TextRecord) -> None:
        values = {name: getattr(record, name) for name in _TEXT_FIXED_FIELDS}
        stmt = insert(TextRow).values(datetime=record.datetime, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[TextRow.datetime],
            set_={name: stmt.excluded[name] for name in _TEXT_FIXED_FIELDS},
        )
        async with self._session() as session:
            await session.execute(stmt)
            await session.commit()

    async def append_text_outcome(
        self, key: int, status: str, timestamp: int, phone: str, from_number: Optional[str] = None
    ) -> None:
        if status not in OUTCOME_STATUSES:
            raise ValueError(f"No outcome list for status {status!r}")
        phone_col = f"{status}_phone"
        table: Any = getattr(TextRow, "__table__")
        stmt = insert(TextRow).values(
            datetime=key,
            type="",
            recipients=0,
            body="",
            from_number=from_number,
            **{status: [timestamp], phone_col: [phone]},
        )
        empty = literal([], type_=JSONB)
        set_: dict[str, Any] = {
            status: func.coalesce(table.c[status], empty).op("||")(stmt.excluded[status]),
            phone_col: func.coalesce(table.c[phone_col], empty).op("||")(stmt.excluded[phone_col]),
        }
        if from_number is not None:
            set_["from_number"] = stmt.excluded.from_number
        stmt = stmt.on_conflict_do_update(index_elements=[table.c.datetime], set_=set_)
        async with self._session() as session:
            await session.execute(stmt)
            await session.commit()

    async def latest_tone_file(self, topic: int) -> Optional[FileRecord]:
        query = (
            select(FileRow)
            .where(FileRow.topic == topic, FileRow.tone.is_(True))
            .order_by(FileRow.added.desc())
            .limit(1)
        )
        async with self._session() as session:
            row = (await session.execute(query)).scalar_one_or_none()
            return file_from_row(row) if row is not None else None

    async def find_file(self, key: str) -> Optional[FileRecord]:
        """Look up a file by key, following renames."""
        current: Optional[str] = key
        hops = 0
        async with self._session() as session:
            while current is not None and hops <= MAX_FILE_TRANSLATIONS:
                row = (await session.execute(select(FileRow).where(FileRow.key == current).limit(1))).scalar_one_or_none()
                if row is not None:
                    return file_from_row(row)
                translation = await session.get(FileTranslationRow, current)
                current = translation.new_key if translation is not None else None
                hops += 1
        return None

    async def set_file_transcript(self, file: FileRecord, transcript: str) -> None:
        stmt = (
            update(FileRow)
            .where(FileRow.topic == file.topic, FileRow.added == file.added)
            .values(transcript=transcript)
        )
        async with self._session() as session:
            await session.execute(stmt)
            await session.commit()

    async def record_dead_letter(self, record: DeadLetterRecord) -> None:
        table: Any = getattr(DeadLetterRow, "__table__")
        async with self._session() as session:
            await session.execute(table.insert().values(**record.model_dump()))
            await session.commit()
