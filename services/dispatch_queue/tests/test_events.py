import pytest
from pydantic import ValidationError

from dispatch.errors import UnknownActionError
from dispatch.events import AlertEvent, InboundTextEvent, PageEvent, TranscriptionEvent, parse_event


def test_page_event_accepts_producer_field_names():
    event = parse_event({"action": "page", "key": "BG_FIRE_VHF_20240101_120000.mp3", "tg": "18332", "len": 12.5, "isTest": True})
    assert isinstance(event, PageEvent)
    assert event.topic == 18332
    assert event.duration == 12.5
    assert event.is_test is True
    assert event.retry_count == 0


def test_inbound_text_body_may_be_form_encoded():
    event = parse_event({
        "action": "inbound-text",
        "body": "To=%2B17195550003&From=%2B15550000001&Body=on+my+way&MediaUrl1=https%3A%2F%2Fm%2F2&MediaUrl0=https%3A%2F%2Fm%2F1",
    })
    assert isinstance(event, InboundTextEvent)
    assert event.text == "on my way"
    assert event.from_number == "+15550000001"
    assert event.media_urls == ["https://m/1", "https://m/2"]


def test_transcribe_state_change_is_normalized():
    event = parse_event({
        "detail-type": "Transcribe Job State Change",
        "detail": {"TranscriptionJobName": "8332-1704135600000", "TranscriptionJobStatus": "COMPLETED"},
    })
    assert isinstance(event, TranscriptionEvent)
    assert event.job_name == "8332-1704135600000"


def test_unknown_or_missing_action():
    with pytest.raises(UnknownActionError) as info:
        parse_event({"action": "reboot"})
    assert info.value.action == "reboot"
    with pytest.raises(UnknownActionError):
        parse_event({"phone": "5550000001"})


def test_malformed_known_action_is_a_validation_error():
    with pytest.raises(ValidationError):
        parse_event({"action": "activate", "phone": "5550000001"})
    with pytest.raises(ValidationError):
        parse_event({"action": "transcription-complete", "job_name": "voicemail-1"})


def test_alert_event_requires_a_known_category():
    event = parse_event({"action": "alert", "category": "Api", "body": "API errors above threshold"})
    assert isinstance(event, AlertEvent)

    with pytest.raises(ValidationError):
        parse_event({"action": "alert", "category": "Pager", "body": "x"})
