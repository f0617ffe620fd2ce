"""Static department and paging talkgroup configuration.

``Directory`` bundles this read-only configuration with the lazily loaded
sending-identity catalog so handlers take a single dependency.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Mapping, Optional

from dispatch.errors import ConfigurationError
from dispatch.identities import IdentityCatalog, SingleFlight


DepartmentType = Literal["page", "text"]

# Department used for department-scoped texts that arrive without one
DEFAULT_DEPARTMENT = "PageOnly"


@dataclass(frozen=True)
class Department:
    id: str
    name: str
    short_name: str
    type: DepartmentType
    default_topics: tuple[int, ...]
    page_identity: str
    text_identity: Optional[str] = None

    @property
    def is_page_only(self) -> bool:
        return self.type == "page"

    def channel_identity(self) -> str:
        """Identity used for department-wide (non page) texts."""
        return self.text_identity or self.page_identity


@dataclass(frozen=True)
class Topic:
    """A paging talkgroup members can subscribe to."""
    id: int
    party: str
    service: str
    link_preset: str


DEPARTMENTS: dict[str, Department] = {
    "Crestone": Department(
        id="Crestone",
        name="Crestone Volunteer Fire Department",
        short_name="Crestone",
        type="text",
        default_topics=(8332,),
        page_identity="page",
        text_identity="chatCrestone",
    ),
    "Baca": Department(
        id="Baca",
        name="Baca Emergency Services",
        short_name="Baca",
        type="page",
        default_topics=(18331,),
        page_identity="pageBaca",
    ),
    "NSCAD": Department(
        id="NSCAD",
        name="NSCAD",
        short_name="NSCAD",
        type="text",
        default_topics=(8198,),
        page_identity="pageNSCAD",
        text_identity="chatNSCAD",
    ),
    "PageOnly": Department(
        id="PageOnly",
        name="Page Only",
        short_name="Page Only",
        type="page",
        default_topics=(),
        page_identity="page",
    ),
    "Saguache": Department(
        id="Saguache",
        name="Saguache Fire Department",
        short_name="Saguache",
        type="page",
        default_topics=(8332,),
        page_identity="pageSaguache",
    ),
}

TOPICS: dict[int, Topic] = {
    8198: Topic(8198, "NSCAD", "AMBO", "pNSCAD"),
    8332: Topic(8332, "NSCFPD", "FIRE", "pNSCFPD"),
    18331: Topic(18331, "BGEMS/BGFD", "BACA", "pBGFD%2FBGEMS"),
    18332: Topic(18332, "NSCFPD VHF", "FIRE", "pNSCFPD"),
    8334: Topic(8334, "Center EMS/Fire", "CENTER", "tg8334"),
    8281: Topic(8281, "Mineral EMS/Fire", "MINERAL", "tg8281"),
    8181: Topic(8181, "Alamosa EMS", "ALAMOSA EMS", "pACFE"),
}


@dataclass
class Directory:
    """Departments, talkgroups, and the sending-identity catalog.

    The catalog is fetched on first use and shared by every caller after.
    """
    identity_loader: SingleFlight[IdentityCatalog]
    departments: Mapping[str, Department] = field(default_factory=lambda: dict(DEPARTMENTS))
    topics: Mapping[int, Topic] = field(default_factory=lambda: dict(TOPICS))

    async def identities(self) -> IdentityCatalog:
        return await self.identity_loader.get()

    def department(self, department_id: str) -> Optional[Department]:
        return self.departments.get(department_id)

    def require_department(self, department_id: str) -> Department:
        dept = self.departments.get(department_id)
        if dept is None:
            raise ConfigurationError(f"Unknown department - {department_id}")
        return dept

    def topic(self, topic_id: int | None) -> Optional[Topic]:
        if topic_id is None:
            return None
        return self.topics.get(int(topic_id))

    def topic_label(self, topic_id: int) -> str:
        topic = self.topic(topic_id)
        return topic.party if topic is not None else f"Talkgroup {topic_id}"
