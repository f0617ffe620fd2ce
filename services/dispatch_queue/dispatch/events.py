"""Queue event shapes, decoded by their ``action`` discriminator.

Every event is a closed pydantic model; :func:`parse_event` checks the
discriminator first so an unknown action is reported as a configuration
problem instead of a validation failure.

Examples
--------
>>> parse_event({"action": "activate", "phone": "+15551234567", "department": "Crestone"}).phone
'5551234567'
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Mapping, Optional, Union
from urllib.parse import parse_qsl

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from dispatch import constants as c
from dispatch.errors import UnknownActionError
from dispatch.formatting import parse_phone


TRANSCRIBE_DETAIL_TYPE = "Transcribe Job State Change"

Phone = Annotated[str, AfterValidator(parse_phone)]


class BaseEvent(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    retry_count: int = Field(default=0, ge=0)
    # Millisecond key stamped on first delivery; audit records derive from it
    dispatch_key: Optional[int] = None


class ActivateEvent(BaseEvent):
    action: Literal["activate"]
    phone: Phone
    department: str


class InboundTextEvent(BaseEvent):
    """Raw provider webhook payload for a text sent to one of our numbers.

    ``body`` may arrive as the form-encoded string the provider posted or as
    an already decoded mapping.
    """
    action: Literal["inbound-text"]
    body: dict[str, str]

    @field_validator("body", mode="before")
    @classmethod
    def decode_form(cls, v: Any) -> Any:
        if isinstance(v, (bytes, str)):
            raw = v.decode("utf-8") if isinstance(v, bytes) else v
            return dict(parse_qsl(raw, keep_blank_values=True))
        return v

    @property
    def to_number(self) -> str:
        return self.body.get("To", "")

    @property
    def from_number(self) -> str:
        return self.body.get("From", "")

    @property
    def text(self) -> str:
        return self.body.get("Body", "")

    @property
    def media_urls(self) -> list[str]:
        keys = [k for k in self.body if k.startswith("MediaUrl")]
        keys.sort(key=lambda k: int(k[8:]) if k[8:].isdigit() else 0)
        return [self.body[k] for k in keys if self.body[k]]


class InboundStatusEvent(BaseEvent):
    """Provider delivery-status callback correlated by the audit key."""
    action: Literal["inbound-status"]
    key: int
    status: str = Field(validation_alias=AliasChoices("status", "MessageStatus"))
    to: Phone = Field(validation_alias=AliasChoices("to", "To"))
    from_number: Optional[str] = Field(default=None, validation_alias=AliasChoices("from_number", "from", "From"))
    event_time: Optional[int] = None


class AnnounceEvent(BaseEvent):
    action: Literal["announce"]
    phone: Phone
    body: str
    department: Optional[str] = None
    topic: Optional[int] = None
    is_test: bool = False


class PageEvent(BaseEvent):
    action: Literal["page"]
    key: str
    topic: int = Field(validation_alias=AliasChoices("topic", "tg"))
    duration: float = Field(default=0, validation_alias=AliasChoices("duration", "len"))
    is_test: bool = Field(default=False, validation_alias=AliasChoices("is_test", "isTest"))


class LoginEvent(BaseEvent):
    action: Literal["login", "auth-code"]
    phone: Phone


class TranscriptionEvent(BaseEvent):
    action: Literal["transcription-complete"]
    # Page transcription jobs are named "<talkgroup>-<millis>"
    job_name: str = Field(pattern=r"^\d{4,5}-\d+$")
    # Job tags as delivered, when the producer already has them
    tags: Optional[dict[str, str]] = None


class PhoneIssueEvent(BaseEvent):
    """Escalation raised by the delivery feedback loop."""
    action: Literal["phone-issue"]
    count: int
    name: str
    number: Phone
    departments: list[str]


class AlertEvent(BaseEvent):
    """System alert for everyone subscribed to one alert category."""
    action: Literal["alert"]
    category: Literal["Api", "Vhf", "Dtr"]
    body: str = Field(min_length=1)


QueueEvent = Annotated[
    Union[
        ActivateEvent,
        InboundTextEvent,
        InboundStatusEvent,
        AnnounceEvent,
        PageEvent,
        LoginEvent,
        TranscriptionEvent,
        PhoneIssueEvent,
        AlertEvent,
    ],
    Field(discriminator="action"),
]

_adapter: TypeAdapter[QueueEvent] = TypeAdapter(QueueEvent)

KNOWN_ACTIONS = frozenset(
    {
        c.ACTION_ACTIVATE,
        c.ACTION_INBOUND_TEXT,
        c.ACTION_INBOUND_STATUS,
        c.ACTION_ANNOUNCE,
        c.ACTION_PAGE,
        c.ACTION_LOGIN,
        c.ACTION_AUTH_CODE,
        c.ACTION_TRANSCRIPTION,
        c.ACTION_PHONE_ISSUE,
        c.ACTION_ALERT,
    }
)


def _normalize(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Map the raw transcription job notification onto the internal shape."""
    data = dict(raw)
    if "action" not in data and data.get("detail-type") == TRANSCRIBE_DETAIL_TYPE:
        detail = data.get("detail") or {}
        return {
            "action": c.ACTION_TRANSCRIPTION,
            "job_name": detail.get("TranscriptionJobName"),
            "retry_count": data.get("retry_count", 0),
            "dispatch_key": data.get("dispatch_key"),
        }
    return data


def parse_event(raw: Mapping[str, Any]) -> QueueEvent:
    """Decode a queue payload into its typed event.

    Raises ``UnknownActionError`` for an unrecognized discriminator and
    ``pydantic.ValidationError`` when a known action has a malformed body.
    """
    data = _normalize(raw)
    action = data.get("action")
    if action not in KNOWN_ACTIONS:
        raise UnknownActionError(action)
    return _adapter.validate_python(data)
