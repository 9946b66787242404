from __future__ import annotations

import logging
from typing import Callable

from .errors import (
    ConversationNotFoundError,
    MessageNotDeletableError,
    PersistenceReadError,
    RestoreTargetMissingError,
    TrashRecordNotFoundError,
)
from .history import SessionStore, welcome_message
from .models import ChatMessage, Conversation, TrashRecord
from .storage import JsonRepository, KeyValueStorage

logger = logging.getLogger(__name__)

TRASH_KEY = "deleted_messages"


class TrashLog:
    """Soft-delete log for conversations and user messages.

    Deleting a conversation stages one conversation-level record holding a
    full snapshot plus one message-level record per user message, so either
    the whole thread or a single message can be brought back later.
    """

    def __init__(
        self,
        store: SessionStore,
        storage: KeyValueStorage,
        stage_conversations: bool = True,
        persist: bool = True,
    ) -> None:
        self._store = store
        self._repository = JsonRepository(storage, TRASH_KEY)
        self._stage_conversations = stage_conversations
        self._persist = persist
        self._records: list[TrashRecord] = []
        self._listeners: list[Callable[[], None]] = []
        self._load()

    def list(self) -> list[TrashRecord]:
        return list(self._records)

    def get(self, record_id: str) -> TrashRecord | None:
        for record in self._records:
            if record.record_id == record_id:
                return record
        return None

    def records_for(self, conversation_id: str) -> list[TrashRecord]:
        return [r for r in self._records if r.original_conversation_id == conversation_id]

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    @property
    def persist(self) -> bool:
        return self._persist

    def set_persist(self, enabled: bool) -> None:
        if enabled == self._persist:
            return
        self._persist = enabled
        if enabled:
            self._save()
        else:
            # 削除済みメッセージにも会話本文が残るので履歴と一緒に消す
            self._repository.clear()
            logger.info("Trash log persistence disabled")

    # Deletion -----------------------------------------------------------
    def delete_conversation(self, conversation_id: str) -> Conversation:
        conversation = self._store.require(conversation_id)
        if self._stage_conversations:
            # 削除前にスナップショットを取っておく
            parent = self._conversation_record(conversation)
            staged = [parent]
            staged.extend(
                self._message_record(conversation, message, parent.record_id)
                for message in conversation.user_messages()
            )
            self._records[:0] = staged
        removed = self._store.remove(conversation_id)
        logger.info("Deleted conversation %s (staged=%s)", conversation_id, self._stage_conversations)
        self._changed()
        return removed

    def delete_message(self, conversation_id: str, message_id: str) -> TrashRecord:
        conversation = self._store.require(conversation_id)
        message = conversation.find_message(message_id)
        if message is None:
            raise MessageNotDeletableError(f"Message {message_id} is not in conversation {conversation_id}.")
        if message.role != "user":
            raise MessageNotDeletableError("Only user messages can be deleted.")

        record = self._message_record(conversation, message)
        self._records.insert(0, record)
        conversation.remove_message(message_id)
        if not conversation.messages:
            conversation.append_message(welcome_message())
        self._store.touch(conversation_id)
        self._changed()
        return record

    # Recovery -----------------------------------------------------------
    def restore(self, record_id: str) -> Conversation:
        """Bring a record back and return the conversation that received it."""

        record = self._require(record_id)
        if record.is_conversation:
            conversation = self._restore_conversation(record)
        else:
            conversation = self._restore_message(record)
        self._changed()
        return conversation

    def purge(self, record_id: str) -> TrashRecord:
        record = self._require(record_id)
        self._records.remove(record)
        logger.info("Purged trash record %s", record_id)
        self._changed()
        return record

    def purge_all(self) -> int:
        count = len(self._records)
        self._records.clear()
        self._changed()
        return count

    # Internal helpers ---------------------------------------------------
    def _restore_conversation(self, record: TrashRecord) -> Conversation:
        if record.snapshot is None:
            raise RestoreTargetMissingError(f"Trash record {record.record_id} has no conversation snapshot.")
        conversation = Conversation.from_dict(record.snapshot)
        original_id = conversation.conversation_id
        if original_id in self._store:
            # 同じ id が既に使われている場合は新しい id で戻す
            conversation = Conversation(
                title=conversation.title,
                messages=conversation.messages,
                last_activity=conversation.last_activity,
                title_locked=conversation.title_locked,
            )
        for message in conversation.messages:
            message.pending = False
        self._records = [
            r
            for r in self._records
            if r.record_id != record.record_id and r.parent_record_id != record.record_id
        ]
        self._store.upsert(conversation)
        logger.info("Restored conversation %s", conversation.conversation_id)
        return conversation

    def _restore_message(self, record: TrashRecord) -> Conversation:
        try:
            parent = self._parent_for(record)
        except RestoreTargetMissingError:
            parent_record = self._conversation_record_for(record)
            if parent_record is None:
                return self._reconstitute(record)
            restored = self._restore_conversation(parent_record)
            if record.parent_record_id != parent_record.record_id:
                # 会話より先に個別削除されていたメッセージはスナップショットに含まれない
                self._records.remove(record)
                restored.append_message(ChatMessage(role="user", content=record.content))
                self._store.touch(restored.conversation_id)
            return restored

        self._records.remove(record)
        parent.append_message(ChatMessage(role="user", content=record.content))
        self._store.touch(parent.conversation_id)
        logger.info("Restored message into conversation %s", parent.conversation_id)
        return parent

    def _reconstitute(self, record: TrashRecord) -> Conversation:
        # 元の会話もその削除記録も残っていないので、メッセージ 1 件だけの会話を作り直す
        conversation = Conversation(conversation_id=record.original_conversation_id, title=record.title)
        conversation.title_locked = True
        conversation.append_message(ChatMessage(role="user", content=record.content))
        self._records.remove(record)
        self._store.upsert(conversation)
        logger.info("Reconstituted conversation %s from a trashed message", conversation.conversation_id)
        return conversation

    def _parent_for(self, record: TrashRecord) -> Conversation:
        try:
            return self._store.require(record.original_conversation_id)
        except ConversationNotFoundError as exc:
            raise RestoreTargetMissingError(
                f"Conversation {record.original_conversation_id} no longer exists."
            ) from exc

    def _conversation_record_for(self, record: TrashRecord) -> TrashRecord | None:
        if record.parent_record_id:
            parent = self.get(record.parent_record_id)
            if parent is not None:
                return parent
        for candidate in self._records:
            if candidate.is_conversation and candidate.original_conversation_id == record.original_conversation_id:
                return candidate
        return None

    def _require(self, record_id: str) -> TrashRecord:
        record = self.get(record_id)
        if record is None:
            raise TrashRecordNotFoundError(record_id)
        return record

    @staticmethod
    def _conversation_record(conversation: Conversation) -> TrashRecord:
        return TrashRecord(
            kind="conversation",
            content=conversation.preview,
            original_conversation_id=conversation.conversation_id,
            title=conversation.title,
            snapshot=conversation.to_dict(),
        )

    @staticmethod
    def _message_record(
        conversation: Conversation, message: ChatMessage, parent_record_id: str | None = None
    ) -> TrashRecord:
        return TrashRecord(
            kind="message",
            content=message.content,
            original_conversation_id=conversation.conversation_id,
            title=conversation.title,
            parent_record_id=parent_record_id,
        )

    def _load(self) -> None:
        if not self._persist:
            return
        try:
            payload = self._repository.load()
            if payload is None:
                return
            if not isinstance(payload, list):
                raise PersistenceReadError("Trash log is not a list.")
            records = [TrashRecord.from_dict(item) for item in payload]
        except PersistenceReadError as exc:
            logger.warning("Discarding unreadable trash log: %s", exc)
            return
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Discarding unreadable trash log: %s", exc)
            return
        self._records = records

    def _save(self) -> None:
        if not self._persist:
            return
        self._repository.save([record.to_dict() for record in self._records])

    def _changed(self) -> None:
        self._save()
        for listener in list(self._listeners):
            listener()
