"""Tests for soft deletion and recovery."""

import pytest

from eva_chat.errors import MessageNotDeletableError, RestoreTargetMissingError, TrashRecordNotFoundError
from eva_chat.history import SessionStore
from eva_chat.models import ChatMessage, Conversation, TrashRecord
from eva_chat.prompts import WELCOME_MESSAGE
from eva_chat.trash import TRASH_KEY, TrashLog


@pytest.fixture
def trash(store, storage):
    return TrashLog(store, storage)


def _talk(store, *lines):
    conversation = store.active_conversation()
    for index, line in enumerate(lines):
        role = "user" if index % 2 == 0 else "assistant"
        conversation.append_message(ChatMessage(role=role, content=line))
    store.touch(conversation.conversation_id)
    return conversation


def test_deleting_conversation_stages_snapshot_and_user_messages(store, trash):
    conversation = _talk(store, "I feel low", "I'm sorry to hear that", "Work is hard")

    trash.delete_conversation(conversation.conversation_id)

    assert conversation.conversation_id not in store
    records = trash.list()
    assert [r.kind for r in records] == ["conversation", "message", "message"]
    assert [r.content for r in records[1:]] == ["I feel low", "Work is hard"]
    assert all(r.parent_record_id == records[0].record_id for r in records[1:])
    assert records[0].title == "I feel low"
    assert trash.records_for(conversation.conversation_id) == records


def test_conversation_round_trip_restores_everything(store, trash):
    conversation = _talk(store, "I feel low", "I'm sorry to hear that")
    expected = [(m.role, m.content) for m in conversation.messages]
    conversation_id = conversation.conversation_id

    trash.delete_conversation(conversation_id)
    record = trash.list()[0]
    restored = trash.restore(record.record_id)

    assert restored.conversation_id == conversation_id
    assert [(m.role, m.content) for m in restored.messages] == expected
    assert store.list()[0].conversation_id == conversation_id
    assert trash.list() == []


def test_message_round_trip_appends_content(store, trash):
    conversation = _talk(store, "First thought", "Tell me more", "Second thought")
    target = conversation.messages[-1]

    record = trash.delete_message(conversation.conversation_id, target.message_id)
    assert record.content == "Second thought"
    assert target.message_id not in [m.message_id for m in conversation.messages]

    restored = trash.restore(record.record_id)
    assert restored is conversation
    assert conversation.messages[-1].role == "user"
    assert conversation.messages[-1].content == "Second thought"
    assert trash.list() == []


def test_only_user_messages_are_deletable(store, trash):
    conversation = store.active_conversation()
    welcome = conversation.messages[0]
    with pytest.raises(MessageNotDeletableError):
        trash.delete_message(conversation.conversation_id, welcome.message_id)
    with pytest.raises(MessageNotDeletableError):
        trash.delete_message(conversation.conversation_id, "missing")


def test_emptied_conversation_is_reseeded(store, trash):
    conversation = store.active_conversation()
    conversation.messages.clear()
    message = ChatMessage(role="user", content="Only line")
    conversation.append_message(message)

    trash.delete_message(conversation.conversation_id, message.message_id)
    assert [m.content for m in conversation.messages] == [WELCOME_MESSAGE]


def test_restoring_message_of_deleted_conversation_restores_parent(store, trash):
    conversation = _talk(store, "I feel low", "Okay", "Work is hard")
    conversation_id = conversation.conversation_id
    trash.delete_conversation(conversation_id)
    message_record = trash.list()[2]

    restored = trash.restore(message_record.record_id)

    assert restored.conversation_id == conversation_id
    assert [m.content for m in restored.user_messages()] == ["I feel low", "Work is hard"]
    assert trash.list() == []


def test_previously_deleted_message_survives_conversation_restore(store, trash):
    conversation = _talk(store, "Keep me", "Okay", "Delete me first")
    conversation_id = conversation.conversation_id
    early = trash.delete_message(conversation_id, conversation.messages[-1].message_id)
    trash.delete_conversation(conversation_id)

    parent = next(r for r in trash.list() if r.is_conversation)
    trash.restore(parent.record_id)

    assert [r.record_id for r in trash.list()] == [early.record_id]
    trash.restore(early.record_id)
    assert store.require(conversation_id).messages[-1].content == "Delete me first"


def test_message_restore_after_parent_record_purged_reconstitutes(store, trash):
    conversation = _talk(store, "I feel low", "Okay")
    conversation_id = conversation.conversation_id
    trash.delete_conversation(conversation_id)
    parent, message_record = trash.list()
    trash.purge(parent.record_id)

    restored = trash.restore(message_record.record_id)

    assert restored.conversation_id == conversation_id
    assert [(m.role, m.content) for m in restored.messages] == [("user", "I feel low")]
    assert restored.title == "I feel low"


def test_restore_with_colliding_id_gets_new_id(store, trash):
    conversation = _talk(store, "Hello", "Hi")
    conversation_id = conversation.conversation_id
    trash.delete_conversation(conversation_id)
    parent = trash.list()[0]
    trash.restore(parent.record_id)

    trash.delete_conversation(conversation_id)
    duplicate = trash.list()[0]
    store.upsert(Conversation(conversation_id=conversation_id))
    restored = trash.restore(duplicate.record_id)

    assert restored.conversation_id != conversation_id
    assert conversation_id in store


def test_purge_unknown_record_raises(trash):
    with pytest.raises(TrashRecordNotFoundError):
        trash.purge("missing")
    with pytest.raises(TrashRecordNotFoundError):
        trash.restore("missing")


def test_purge_all_empties_log(store, trash):
    conversation = _talk(store, "One", "Two", "Three")
    trash.delete_conversation(conversation.conversation_id)
    assert trash.purge_all() == 3
    assert trash.list() == []


def test_trash_persists_across_instances(store, storage, trash):
    conversation = _talk(store, "Remember me", "Sure")
    trash.delete_conversation(conversation.conversation_id)

    reloaded = TrashLog(SessionStore(storage), storage)
    assert [r.kind for r in reloaded.list()] == ["conversation", "message"]
    assert reloaded.list()[1].content == "Remember me"


def test_unstaged_conversation_delete_is_permanent(store, storage):
    trash = TrashLog(store, storage, stage_conversations=False)
    conversation = _talk(store, "Gone", "Okay")
    trash.delete_conversation(conversation.conversation_id)
    assert trash.list() == []
    assert conversation.conversation_id not in store


def test_unpersisted_trash_stays_in_memory(store, storage):
    trash = TrashLog(store, storage, persist=False)
    conversation = _talk(store, "Private", "Okay")
    trash.delete_conversation(conversation.conversation_id)

    assert TRASH_KEY not in storage
    assert len(trash.list()) == 2

    trash.set_persist(True)
    assert len(TrashLog(SessionStore(storage), storage).list()) == 2


def test_conversation_record_without_snapshot_cannot_restore(trash):
    record = TrashRecord(kind="conversation", content="", original_conversation_id="gone")
    trash._records.insert(0, record)
    with pytest.raises(RestoreTargetMissingError):
        trash.restore(record.record_id)
