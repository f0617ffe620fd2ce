from types import SimpleNamespace
from typing import Any, Iterable, Optional

import pytest

from dispatch.config import Settings
from dispatch.constants import OUTCOME_STATUSES
from dispatch.context import DispatchContext
from dispatch.directory import Directory
from dispatch.dispatcher import Dispatcher
from dispatch.errors import ProviderError
from dispatch.identities import SingleFlight, build_catalog
from dispatch.models import DeadLetterRecord, FileRecord, Membership, TextRecord, User
from dispatch.transcribe import TranscriptionJob


SECRET = {
    "apiCode": "code123",
    "accountSid": "ACmain",
    "authToken": "tok-main",
    "accountSidCrestone": "ACcrestone",
    "authTokenCrestone": "tok-crestone",
    "accountSidBaca": "ACbaca",
    "authTokenBaca": "tok-baca",
    "accountSidNSCAD": "ACnscad",
    "authTokenNSCAD": "tok-nscad",
    "accountSidSaguache": "ACsaguache",
    "authTokenSaguache": "tok-saguache",
    "phoneNumberCrestonepage": "+17195550001",
    "phoneNumberalert": "+17195550002",
    "phoneNumberCrestonechat": "+17195550003",
    "phoneNumberNSCADchat": "+17195550004",
    "phoneNumberNSCADpage": "+17195550005",
    "phoneNumberBacapage": "+17195550006",
    "phoneNumberSaguachepage": "+17195550007",
}


def make_user(phone: str, departments: Optional[dict[str, dict]] = None, **fields: Any) -> User:
    """User active (non-admin) in the given departments unless flags say otherwise."""
    memberships = {
        dept: Membership(**{"active": True, **flags}) for dept, flags in (departments or {}).items()
    }
    fields.setdefault("f_name", f"First{phone[-2:]}")
    fields.setdefault("l_name", f"Last{phone[-2:]}")
    return User(phone=phone, departments=memberships, **fields)


class InMemoryStore:
    """Dict-backed store with the same merge rules as the SQL store."""

    def __init__(self, users: Iterable[User] = (), files: Iterable[FileRecord] = ()) -> None:
        self.users: dict[str, User] = {u.phone: u for u in users}
        self.texts: dict[int, TextRecord] = {}
        self.files: list[FileRecord] = list(files)
        self.translations: dict[str, str] = {}
        self.dead_letters: list[DeadLetterRecord] = []
        self.put_calls = 0

    async def get_user(self, phone):
        return self.users.get(phone)

    async def list_users(self, department=None):
        return [u for u in self.users.values() if department is None or u.is_active_in(department)]

    async def update_user(self, phone, **fields):
        user = self.users.get(phone)
        if user is None:
            return None
        self.users[phone] = user.model_copy(update=fields)
        return self.users[phone]

    async def activate_membership(self, phone, department):
        user = self.users.get(phone)
        if user is None:
            return None
        departments = dict(user.departments)
        current = departments.get(department) or Membership()
        departments[department] = current.model_copy(update={"active": True})
        self.users[phone] = user.model_copy(update={"departments": departments, "code": None, "code_expiry": None})
        return self.users[phone]

    async def put_text(self, record):
        self.put_calls += 1
        existing = self.texts.get(record.datetime)
        if existing is not None:
            kept = {f: getattr(existing, f) for s in OUTCOME_STATUSES for f in (s, f"{s}_phone")}
            record = record.model_copy(update=kept)
        self.texts[record.datetime] = record

    async def append_text_outcome(self, key, status, timestamp, phone, from_number=None):
        record = self.texts.get(key) or TextRecord(datetime=key, type="", recipients=0, body="")
        update = {
            status: [*getattr(record, status), timestamp],
            f"{status}_phone": [*getattr(record, f"{status}_phone"), phone],
        }
        if from_number is not None:
            update["from_number"] = from_number
        self.texts[key] = record.model_copy(update=update)

    async def latest_tone_file(self, topic):
        tones = [f for f in self.files if f.topic == topic and f.tone]
        return max(tones, key=lambda f: f.added) if tones else None

    async def find_file(self, key):
        current, hops = key, 0
        while current is not None and hops <= 10:
            for f in self.files:
                if f.key == current:
                    return f
            current = self.translations.get(current)
            hops += 1
        return None

    async def set_file_transcript(self, file, transcript):
        self.files = [
            f.model_copy(update={"transcript": transcript}) if (f.topic, f.added) == (file.topic, file.added) else f
            for f in self.files
        ]

    async def record_dead_letter(self, record):
        self.dead_letters.append(record)

    def texts_of_type(self, type):
        return [t for t in self.texts.values() if t.type == type]


class FakeProvider:
    """Records every send; raises for numbers listed in ``fail_for``."""

    def __init__(self, fail_for: Iterable[str] = ()) -> None:
        self.fail_for = set(fail_for)
        self.attempts: list[str] = []
        self.sent: list[SimpleNamespace] = []

    async def send(self, identity, to, body, media_urls=(), status_callback=None):
        self.attempts.append(to)
        if to in self.fail_for:
            raise ProviderError("Attempt to send to unsubscribed recipient", 21610)
        self.sent.append(
            SimpleNamespace(
                identity=identity.name,
                from_=identity.number,
                to=to,
                body=body,
                media_urls=list(media_urls),
                status_callback=status_callback,
            )
        )
        return f"SM{len(self.sent):04d}"

    def to(self, phone):
        return [s for s in self.sent if s.to == phone]


class ListPublisher:
    def __init__(self) -> None:
        self.events: list[dict] = []

    async def publish(self, event):
        self.events.append(dict(event))


class StaticTranscripts:
    def __init__(self, jobs: dict[str, TranscriptionJob]) -> None:
        self.jobs = jobs

    async def fetch(self, job_name):
        return self.jobs[job_name]


def static_directory(secret: Optional[dict] = None, **overrides: Any) -> Directory:
    async def _load():
        return build_catalog(secret or SECRET)

    return Directory(SingleFlight(_load), **overrides)


@pytest.fixture
def settings():
    return Settings(
        testing_user=None,
        send_concurrency=4,
        time_zone="America/Denver",
        page_link_base_url="https://cofrn.org/",
        status_callback_base_url="https://example.test/api/v2/twilio",
    )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def publisher():
    return ListPublisher()


@pytest.fixture
def make_ctx(settings, provider, publisher):
    def _make(store: InMemoryStore, directory: Optional[Directory] = None, transcripts=None, **setting_overrides):
        effective = settings.model_copy(update=setting_overrides) if setting_overrides else settings
        directory = directory or static_directory()
        return DispatchContext(
            settings=effective,
            store=store,
            directory=directory,
            dispatcher=Dispatcher(directory, provider, effective),
            publisher=publisher,
            transcripts=transcripts,
        )

    return _make
