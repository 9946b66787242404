from __future__ import annotations

import logging
from typing import Callable

from .errors import ConversationNotFoundError, PersistenceReadError
from .models import ChatMessage, Conversation, utc_now_iso
from .prompts import WELCOME_MESSAGE
from .storage import JsonRepository, KeyValueStorage

logger = logging.getLogger(__name__)

HISTORY_KEY = "chat_history"

StoreListener = Callable[[], None]


def welcome_message() -> ChatMessage:
    return ChatMessage(role="assistant", content=WELCOME_MESSAGE)


class SessionStore:
    """Conversation collection ordered most-recent-first, plus the active id.

    The store is never observably empty: loading nothing, loading garbage, or
    removing the last conversation all end with one freshly seeded
    conversation that is also the active one.
    """

    def __init__(self, storage: KeyValueStorage, persist: bool = True) -> None:
        self._repository = JsonRepository(storage, HISTORY_KEY)
        self._persist = persist
        self._conversations: dict[str, Conversation] = {}
        self._active_id: str | None = None
        self._listeners: list[StoreListener] = []
        self._load()

    # Queries ------------------------------------------------------------
    def list(self) -> list[Conversation]:
        return list(self._conversations.values())

    def get(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    def require(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._conversations

    def __len__(self) -> int:
        return len(self._conversations)

    @property
    def active_conversation_id(self) -> str:
        if self._active_id is None or self._active_id not in self._conversations:
            # 参照切れのまま外に見せない
            return self._heal()
        return self._active_id

    def active_conversation(self) -> Conversation:
        return self._conversations[self.active_conversation_id]

    def search(self, query: str) -> list[Conversation]:
        needle = query.strip().lower()
        if not needle:
            return self.list()
        return [
            conversation
            for conversation in self._conversations.values()
            if needle in conversation.title.lower() or needle in conversation.preview.lower()
        ]

    # Mutations ----------------------------------------------------------
    def create_new(self) -> Conversation:
        conversation = Conversation()
        while conversation.conversation_id in self._conversations:
            conversation = Conversation()
        conversation.append_message(welcome_message())
        self._insert_front(conversation)
        self._active_id = conversation.conversation_id
        logger.debug("Created conversation %s", conversation.conversation_id)
        self._changed()
        return conversation

    def upsert(self, conversation: Conversation) -> Conversation:
        if not conversation.messages:
            conversation.append_message(welcome_message())
        self._insert_front(conversation)
        if self._active_id is None:
            self._active_id = conversation.conversation_id
        self._changed()
        return conversation

    def remove(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.pop(conversation_id, None)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        logger.debug("Removed conversation %s", conversation_id)
        if self._active_id == conversation_id:
            self._active_id = None
        self._heal(notify=False)
        self._changed()
        return conversation

    def clear(self) -> list[Conversation]:
        removed = self.list()
        self._conversations.clear()
        self._active_id = None
        self._heal(notify=False)
        self._changed()
        return removed

    def select(self, conversation_id: str) -> Conversation:
        conversation = self.require(conversation_id)
        self._active_id = conversation_id
        self._notify()
        return conversation

    def rename(self, conversation_id: str, title: str) -> bool:
        conversation = self.require(conversation_id)
        if not conversation.rename(title):
            return False
        self._changed()
        return True

    def touch(self, conversation_id: str) -> None:
        """Record activity on a conversation: move it to the front and persist."""

        conversation = self.require(conversation_id)
        conversation.last_activity = utc_now_iso()
        self._insert_front(conversation)
        self._changed()

    def save(self) -> None:
        if not self._persist:
            return
        payload = {
            "active_conversation_id": self._active_id,
            "conversations": [conversation.to_dict() for conversation in self._conversations.values()],
        }
        self._repository.save(payload)

    # Persistence toggle -------------------------------------------------
    @property
    def persist(self) -> bool:
        return self._persist

    def set_persist(self, enabled: bool) -> None:
        if enabled == self._persist:
            return
        self._persist = enabled
        if enabled:
            self.save()
        else:
            # 履歴保存を止めたら既存の保存データも消す
            self._repository.clear()
            logger.info("Conversation history persistence disabled")

    # Listeners ----------------------------------------------------------
    def add_listener(self, listener: StoreListener) -> None:
        self._listeners.append(listener)

    # Internal helpers ---------------------------------------------------
    def _load(self) -> None:
        if not self._persist:
            self._heal(notify=False)
            return
        try:
            conversations, active_id = self._read()
        except PersistenceReadError as exc:
            logger.warning("Discarding unreadable conversation history: %s", exc)
            conversations, active_id = [], None

        for conversation in conversations:
            if conversation.conversation_id in self._conversations:
                continue
            if not conversation.messages:
                conversation.append_message(welcome_message())
            for message in conversation.messages:
                # 前回終了時に表示途中だったメッセージは確定扱いにする
                message.pending = False
            self._conversations[conversation.conversation_id] = conversation

        self._active_id = active_id if active_id in self._conversations else None
        if self._conversations and self._active_id is None:
            self._active_id = next(iter(self._conversations))
        if not self._conversations:
            self._heal(notify=False)

    def _read(self) -> tuple[list[Conversation], str | None]:
        payload = self._repository.load()
        if payload is None:
            return [], None
        if isinstance(payload, list):
            raw_conversations, active_id = payload, None
        elif isinstance(payload, dict):
            raw_conversations = payload.get("conversations", [])
            active_id = payload.get("active_conversation_id")
        else:
            raise PersistenceReadError("Conversation history has an unexpected shape.")
        if not isinstance(raw_conversations, list):
            raise PersistenceReadError("Conversation history is not a list.")
        try:
            conversations = [Conversation.from_dict(item) for item in raw_conversations]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise PersistenceReadError(f"Malformed conversation entry: {exc}") from exc
        return conversations, active_id if isinstance(active_id, str) else None

    def _heal(self, notify: bool = True) -> str:
        active_id = self._active_id
        if active_id is not None and active_id in self._conversations:
            return active_id
        if self._conversations:
            active_id = next(iter(self._conversations))
            self._active_id = active_id
            return active_id
        conversation = Conversation()
        conversation.append_message(welcome_message())
        self._conversations[conversation.conversation_id] = conversation
        self._active_id = conversation.conversation_id
        if notify:
            self._changed()
        return conversation.conversation_id

    def _insert_front(self, conversation: Conversation) -> None:
        self._conversations.pop(conversation.conversation_id, None)
        self._conversations = {conversation.conversation_id: conversation, **self._conversations}

    def _changed(self) -> None:
        self.save()
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()
