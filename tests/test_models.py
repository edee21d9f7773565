import dataclasses

import pytest

from offline_sync.models import OfflineChat, OfflineMessage


def test_create_sets_uuid_timestamp_and_pending():
    m = OfflineMessage.create("c1", "hello", "user", mode="study")
    assert len(m.id) == 36
    assert m.created_at.endswith("Z")
    assert m.pending is True
    assert m.mode == "study"


def test_entries_are_immutable():
    m = OfflineMessage.create("c1", "hello", "user")
    with pytest.raises(dataclasses.FrozenInstanceError):
        m.content = "edited"  # type: ignore[misc]


@pytest.mark.parametrize("kwargs", [
    {"id": "", "chat_id": "c1", "role": "user"},
    {"id": "m1", "chat_id": "", "role": "user"},
    {"id": "m1", "chat_id": "c1", "role": "system"},
])
def test_invalid_message_rejected(kwargs):
    with pytest.raises(ValueError):
        OfflineMessage(content="x", created_at="2024-01-01T00:00:00.000Z", **kwargs)


def test_remote_row_uses_snake_case_and_original_created_at():
    m = OfflineMessage(id="m1", chat_id="c1", content="hi", role="assistant", mode=None,
                       created_at="2024-01-01T00:00:00.000Z", pending=True)
    assert m.to_remote_row("u1") == {
        "id": "m1",
        "chat_id": "c1",
        "content": "hi",
        "role": "assistant",
        "mode": None,
        "user_id": "u1",
        "created_at": "2024-01-01T00:00:00.000Z",
    }


def test_wire_dicts_are_camel_case():
    m = OfflineMessage.from_dict({"id": "m1", "chatId": "c1", "content": "hi", "role": "user",
                                  "createdAt": "2024-01-01T00:00:00.000Z", "pending": True})
    assert m.to_dict()["chatId"] == "c1"
    chat = OfflineChat.from_dict({"id": "c1", "name": "Chat", "mode": "chat",
                                  "updatedAt": "2024-01-01T00:00:00.000Z", "isPinned": True})
    assert chat.to_dict()["isPinned"] is True
    assert chat.to_dict()["projectId"] is None


@pytest.mark.parametrize("mode", [{"a": 1}, 3, ["chat"]])
def test_non_string_mode_rejected(mode):
    with pytest.raises(ValueError):
        OfflineMessage.create("c1", "x", "user", mode=mode)
    with pytest.raises(ValueError):
        OfflineMessage.from_dict({"id": "m1", "chatId": "c1", "content": "x", "role": "user", "mode": mode})
    with pytest.raises(ValueError):
        OfflineChat.from_dict({"id": "c1", "name": "C", "mode": mode})


def test_missing_mode_is_allowed():
    assert OfflineMessage.create("c1", "x", "user").mode is None
    assert OfflineChat.from_dict({"id": "c1", "name": "C"}).mode == ""
