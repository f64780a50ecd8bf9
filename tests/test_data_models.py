from datetime import datetime, timezone

import pytest

from livechat_relay.data_models import ChatEvent, MessageSource, NormalizedMessage


def _message(**overrides):
    fields = dict(
        id="m1",
        source=MessageSource.PUSH,
        author="alice",
        text="hi",
        is_privileged=False,
        platform="Twitch",
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return NormalizedMessage(**fields)


def test_to_dict_uses_wire_field_names():
    assert _message(accent_color="#FF0000").to_dict() == {
        "id": "m1",
        "source": "push",
        "platform": "Twitch",
        "author": "alice",
        "text": "hi",
        "isPrivileged": False,
        "accentColor": "#FF0000",
        "timestamp": "2024-01-01T00:00:00+00:00",
    }


#text may be empty but is never absent
def test_missing_text_becomes_empty_string():
    assert _message(text=None).text == ""


@pytest.mark.parametrize("overrides", [{"id": ""}, {"author": None}])
def test_required_fields_are_enforced(overrides):
    with pytest.raises(ValueError):
        _message(**overrides)


def test_chat_event_envelopes():
    message = _message()
    assert ChatEvent.chat(message).to_dict() == {"event": "chat message", "data": message.to_dict()}
    notice = ChatEvent.notice("YouTube Live Chat has ended.")
    assert notice.is_notice
    assert notice.to_dict() == {"event": "notice", "data": "YouTube Live Chat has ended."}
