"""Tests for conversation, message, trash and settings models."""

import pytest

from eva_chat.models import (
    DEFAULT_TITLE,
    ChatMessage,
    ColorTheme,
    Conversation,
    TrashRecord,
    UserSettings,
    new_id,
)


def test_new_id_is_unique():
    ids = {new_id() for _ in range(2000)}
    assert len(ids) == 2000


def test_first_user_message_derives_title():
    conv = Conversation()
    conv.append_message(ChatMessage(role="assistant", content="Welcome"))
    assert conv.title == DEFAULT_TITLE

    conv.append_message(ChatMessage(role="user", content="  I have   been feeling anxious about my exams lately  "))
    assert conv.title == "I have been feeling anxious abou"

    conv.append_message(ChatMessage(role="user", content="Something else"))
    assert conv.title.startswith("I have been")


def test_renamed_title_is_not_overwritten():
    conv = Conversation()
    assert conv.rename("  Exam stress ")
    conv.append_message(ChatMessage(role="user", content="Hello"))
    assert conv.title == "Exam stress"


def test_blank_rename_is_ignored():
    conv = Conversation(title="Keep me")
    assert not conv.rename("   ")
    assert conv.title == "Keep me"


def test_preview_truncates_latest_message():
    conv = Conversation()
    conv.append_message(ChatMessage(role="user", content="x" * 40))
    assert conv.preview == "x" * 30 + "..."


def test_conversation_round_trip_preserves_messages():
    conv = Conversation(title="Sleep")
    conv.append_message(ChatMessage(role="assistant", content="Hi"))
    conv.append_message(ChatMessage(role="user", content="I can't sleep"))

    restored = Conversation.from_dict(conv.to_dict())
    assert restored.conversation_id == conv.conversation_id
    assert [m.to_dict() for m in restored.messages] == [m.to_dict() for m in conv.messages]


def test_message_from_dict_rejects_unknown_role():
    with pytest.raises(ValueError):
        ChatMessage.from_dict({"role": "system", "content": "x"})


def test_conversation_trash_record_requires_snapshot():
    with pytest.raises(ValueError):
        TrashRecord.from_dict(
            {"id": "r1", "kind": "conversation", "content": "", "original_conversation_id": "c1"}
        )


def test_user_settings_defaults_and_merge():
    settings = UserSettings()
    assert settings.persist_history is True
    assert settings.allow_telemetry is True
    assert settings.color_theme is ColorTheme.BLUE

    updated = settings.merged({"sound_enabled": True, "color_theme": "purple"})
    assert updated.sound_enabled is True
    assert updated.color_theme is ColorTheme.PURPLE
    assert settings.sound_enabled is False


def test_user_settings_rejects_unknown_keys_and_types():
    with pytest.raises(ValueError):
        UserSettings().merged({"volume": 3})
    with pytest.raises(TypeError):
        UserSettings().merged({"sound_enabled": "yes"})
    with pytest.raises(ValueError):
        UserSettings().merged({"color_theme": "orange"})


def test_user_settings_from_dict_ignores_bad_values():
    settings = UserSettings.from_dict({"sound_enabled": "on", "color_theme": "neon", "persist_history": False})
    assert settings.sound_enabled is False
    assert settings.color_theme is ColorTheme.BLUE
    assert settings.persist_history is False
