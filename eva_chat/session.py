from __future__ import annotations

import logging
from typing import Any

from PySide6.QtCore import QObject, Signal

from .config import AppConfig
from .controller import ConversationController
from .errors import BusyError, EmptyInputError
from .history import SessionStore
from .llm_client import CompletionClient, OpenAIChatClient
from .models import Conversation, TrashRecord, UserSettings
from .preferences import PreferencesStore
from .prompts import SYSTEM_PROMPT
from .storage import JsonFileStorage, KeyValueStorage
from .trash import TrashLog

logger = logging.getLogger(__name__)


class ChatSession(QObject):
    """Everything the window needs, behind one object.

    Owns the session store, the trash log, the user preferences and the
    conversation controller, and keeps them consistent with each other (for
    example deleting a conversation first abandons its in-flight exchange).
    """

    conversations_changed = Signal()
    active_changed = Signal(str)
    trash_changed = Signal()
    settings_changed = Signal(object)

    def __init__(
        self,
        storage: KeyValueStorage,
        client: CompletionClient,
        reveal_interval_ms: int = 30,
        stage_deleted_conversations: bool = True,
        system_prompt: str | None = SYSTEM_PROMPT,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._preferences = PreferencesStore(storage)
        settings = self._preferences.get()
        self._store = SessionStore(storage, persist=settings.persist_history)
        self._trash = TrashLog(
            self._store,
            storage,
            stage_conversations=stage_deleted_conversations,
            persist=settings.persist_history,
        )
        self._client = client
        self._apply_client_settings(settings)
        self._controller = ConversationController(
            self._store,
            client,
            preferences=self._preferences,
            system_prompt=system_prompt,
            reveal_interval_ms=reveal_interval_ms,
            parent=self,
        )
        self._store.add_listener(self.conversations_changed.emit)
        self._trash.add_listener(self.trash_changed.emit)
        self._preferences.add_listener(self._on_settings_changed)

    @classmethod
    def from_config(cls, config: AppConfig, parent: QObject | None = None) -> "ChatSession":
        storage = JsonFileStorage(config.paths.data_dir)
        client = OpenAIChatClient(config.llm())
        return cls(
            storage,
            client,
            reveal_interval_ms=config.reveal_interval_ms,
            stage_deleted_conversations=config.stage_deleted_conversations,
            parent=parent,
        )

    @property
    def controller(self) -> ConversationController:
        return self._controller

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def trash(self) -> TrashLog:
        return self._trash

    # Conversations ------------------------------------------------------
    def list_conversations(self) -> list[Conversation]:
        return self._store.list()

    def search_conversations(self, query: str) -> list[Conversation]:
        return self._store.search(query)

    def active_conversation(self) -> Conversation:
        return self._store.active_conversation()

    def select_conversation(self, conversation_id: str) -> Conversation:
        # 応答待ちの会話から切り替えても進行中のやり取りには触れない
        conversation = self._store.select(conversation_id)
        self.active_changed.emit(conversation_id)
        return conversation

    def new_conversation(self) -> Conversation:
        conversation = self._store.create_new()
        self.active_changed.emit(conversation.conversation_id)
        return conversation

    def rename_conversation(self, conversation_id: str, title: str) -> bool:
        return self._store.rename(conversation_id, title)

    def submit(self, text: str) -> bool:
        """Send ``text`` in the active conversation.

        Blank input and submissions while a reply is pending are ignored and
        return ``False``.
        """

        conversation_id = self._store.active_conversation_id
        try:
            self._controller.submit(conversation_id, text)
        except EmptyInputError:
            logger.debug("Ignoring empty submission")
            return False
        except BusyError:
            logger.debug("Ignoring submission while %s is busy", conversation_id)
            return False
        return True

    def is_busy(self, conversation_id: str | None = None) -> bool:
        return self._controller.is_busy(conversation_id or self._store.active_conversation_id)

    def last_error(self, conversation_id: str | None = None) -> str | None:
        return self._controller.last_error(conversation_id or self._store.active_conversation_id)

    # Deletion and recovery ----------------------------------------------
    def delete_conversation(self, conversation_id: str) -> Conversation:
        was_active = conversation_id == self._store.active_conversation_id
        self._controller.cancel(conversation_id)
        removed = self._trash.delete_conversation(conversation_id)
        if was_active:
            self.active_changed.emit(self._store.active_conversation_id)
        return removed

    def delete_all_conversations(self) -> int:
        ids = [conversation.conversation_id for conversation in self._store.list()]
        for conversation_id in ids:
            self._controller.cancel(conversation_id)
            self._trash.delete_conversation(conversation_id)
        self.active_changed.emit(self._store.active_conversation_id)
        return len(ids)

    def delete_message(self, conversation_id: str, message_id: str) -> TrashRecord:
        return self._trash.delete_message(conversation_id, message_id)

    def trash_records(self) -> list[TrashRecord]:
        return self._trash.list()

    def restore(self, record_id: str) -> Conversation:
        return self._trash.restore(record_id)

    def purge(self, record_id: str) -> TrashRecord:
        return self._trash.purge(record_id)

    def purge_all(self) -> int:
        return self._trash.purge_all()

    # Settings -----------------------------------------------------------
    def get_settings(self) -> UserSettings:
        return self._preferences.get()

    def update_settings(self, **partial: Any) -> UserSettings:
        return self._preferences.update(**partial)

    def shutdown(self) -> None:
        self._controller.shutdown()
        self._store.save()

    # Internal helpers ---------------------------------------------------
    def _on_settings_changed(self, previous: UserSettings, current: UserSettings) -> None:
        if previous.persist_history != current.persist_history:
            self._store.set_persist(current.persist_history)
            self._trash.set_persist(current.persist_history)
        self._apply_client_settings(current)
        self.settings_changed.emit(current)

    def _apply_client_settings(self, settings: UserSettings) -> None:
        if isinstance(self._client, OpenAIChatClient):
            self._client.allow_telemetry = settings.allow_telemetry
