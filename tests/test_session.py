"""Tests for the ChatSession facade used by the window."""

import json

import pytest

from eva_chat.config import AppConfig, LLMConfig
from eva_chat.history import HISTORY_KEY
from eva_chat.llm_client import OpenAIChatClient
from eva_chat.models import ChatMessage, ColorTheme
from eva_chat.preferences import SETTINGS_KEY
from eva_chat.prompts import WELCOME_MESSAGE
from eva_chat.session import ChatSession
from eva_chat.storage import JsonFileStorage
from eva_chat.trash import TRASH_KEY

from .conftest import StubClient


@pytest.fixture
def make_session(qt_app, storage):
    created = []

    def _factory(client=None, **kwargs):
        kwargs.setdefault("reveal_interval_ms", 0)
        session = ChatSession(storage, client or StubClient(), **kwargs)
        created.append(session)
        return session

    yield _factory
    for session in created:
        session.shutdown()


def test_submit_in_active_conversation(make_session, wait_until):
    session = make_session()
    assert session.submit("Hello")
    wait_until(lambda: not session.is_busy())

    messages = session.active_conversation().messages
    assert [m.content for m in messages] == [WELCOME_MESSAGE, "Hello", "Hi there"]


def test_blank_and_busy_submissions_are_ignored(make_session, wait_until):
    client = StubClient(gated=True)
    session = make_session(client)

    assert session.submit("   ") is False
    assert session.submit("First") is True
    assert session.submit("Second") is False

    client.release()
    wait_until(lambda: not session.is_busy())
    assert [m.content for m in session.active_conversation().user_messages()] == ["First"]


def test_failed_submit_exposes_error(make_session, wait_until):
    session = make_session(StubClient(error=RuntimeError("offline")))
    session.submit("Hello")
    wait_until(lambda: session.last_error() is not None)
    assert session.last_error() == "Failed to send message. Please try again."
    assert [m.content for m in session.active_conversation().messages] == [WELCOME_MESSAGE]


def test_deleting_only_conversation_leaves_fresh_one(make_session):
    session = make_session()
    only = session.active_conversation().conversation_id
    active = []
    session.active_changed.connect(active.append)

    session.delete_conversation(only)

    conversations = session.list_conversations()
    assert len(conversations) == 1
    assert conversations[0].conversation_id != only
    assert active == [conversations[0].conversation_id]
    assert session.trash_records()[0].is_conversation


def test_deleting_in_flight_conversation_discards_reply(make_session, wait_until):
    client = StubClient(gated=True)
    session = make_session(client)
    conversation_id = session.active_conversation().conversation_id
    session.submit("Hello")

    session.delete_conversation(conversation_id)
    assert not session.is_busy(conversation_id)
    client.release()
    threads = session.controller._threads
    wait_until(lambda: all(thread.isFinished() for thread, _ in threads))

    assert conversation_id not in session.store
    record = next(r for r in session.trash_records() if r.is_conversation)
    # 削除時点では応答待ちの発話は取り消されている
    assert [m["content"] for m in record.snapshot["messages"]] == [WELCOME_MESSAGE]


def test_delete_all_routes_through_trash(make_session):
    session = make_session()
    session.new_conversation()
    session.new_conversation()

    assert session.delete_all_conversations() == 3
    assert len(session.list_conversations()) == 1
    assert sum(1 for r in session.trash_records() if r.is_conversation) == 3

    assert session.purge_all() == 3
    assert session.trash_records() == []


def test_select_and_rename(make_session):
    session = make_session()
    first = session.active_conversation()
    second = session.new_conversation()
    assert session.active_conversation() is second

    session.select_conversation(first.conversation_id)
    assert session.active_conversation() is first
    assert session.rename_conversation(first.conversation_id, "Morning check-in")
    assert [c.title for c in session.search_conversations("check-in")] == ["Morning check-in"]


def test_settings_update_persists_and_notifies(make_session, storage):
    session = make_session()
    seen = []
    session.settings_changed.connect(seen.append)

    updated = session.update_settings(color_theme="green", sound_enabled=True)

    assert updated.color_theme is ColorTheme.GREEN
    assert seen == [updated]
    assert json.loads(storage.get(SETTINGS_KEY))["color_theme"] == "green"
    assert make_session().get_settings() == updated


def test_turning_off_history_clears_stored_conversations(make_session, storage):
    session = make_session()
    session.new_conversation()
    assert HISTORY_KEY in storage

    session.update_settings(persist_history=False)
    assert HISTORY_KEY not in storage
    session.new_conversation()
    assert HISTORY_KEY not in storage


def test_history_off_keeps_deleted_conversations_off_disk(make_session, storage):
    session = make_session()
    session.delete_conversation(session.new_conversation().conversation_id)
    assert TRASH_KEY in storage

    session.update_settings(persist_history=False)
    assert TRASH_KEY not in storage

    conversation = session.active_conversation()
    conversation.append_message(ChatMessage(role="user", content="my secret diary"))
    conversation_id = conversation.conversation_id
    session.delete_conversation(conversation_id)

    assert HISTORY_KEY not in storage
    assert TRASH_KEY not in storage
    assert [r.content for r in session.trash_records() if not r.is_conversation] == ["my secret diary"]


def test_telemetry_preference_reaches_openai_client(make_session):
    client = OpenAIChatClient(
        LLMConfig(
            base_url="https://example.invalid/v1",
            model="gpt-3.5-turbo",
            temperature=0.7,
            max_tokens=500,
            request_timeout_sec=5,
            api_key=None,
        )
    )
    session = make_session(client)
    assert client.allow_telemetry is True

    session.update_settings(allow_telemetry=False)
    assert client.allow_telemetry is False


def test_from_config_uses_data_directory(qt_app, tmp_path):
    config = AppConfig.for_root(tmp_path, {"reveal": {"interval_ms": 0}})
    session = ChatSession.from_config(config)
    try:
        session.new_conversation()
    finally:
        session.shutdown()
    assert JsonFileStorage(config.paths.data_dir).get(HISTORY_KEY) is not None
