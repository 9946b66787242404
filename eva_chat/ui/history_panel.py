from __future__ import annotations

from datetime import datetime
from typing import Iterable

from PySide6.QtCore import Qt, Signal
from PySide6.QtWidgets import (
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QListWidget,
    QListWidgetItem,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from ..models import Conversation

BUSY_MARKER = "… "


class HistoryPanel(QWidget):
    """Sidebar listing conversations, most recent first."""

    conversation_selected = Signal(str)
    new_conversation_requested = Signal()
    rename_requested = Signal(str)
    delete_requested = Signal(str)
    delete_all_requested = Signal()
    search_changed = Signal(str)

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self._items: dict[str, tuple[QListWidgetItem, Conversation]] = {}
        self._busy_ids: set[str] = set()

        self._title_label = QLabel("Eva", self)
        self._title_label.setObjectName("HistoryTitleLabel")
        self._title_label.setStyleSheet("font-weight: 600; font-size: 16px;")

        new_button = QPushButton("New chat", self)
        new_button.clicked.connect(self.new_conversation_requested.emit)

        self._search = QLineEdit(self)
        self._search.setPlaceholderText("Search conversations")
        self._search.setClearButtonEnabled(True)
        self._search.textChanged.connect(self.search_changed.emit)

        self._list = QListWidget(self)
        self._list.setWordWrap(True)
        self._list.currentItemChanged.connect(self._on_current_changed)
        self._list.itemDoubleClicked.connect(lambda _item: self._emit_for_current(self.rename_requested))

        self._empty_label = QLabel("No conversations found", self)
        self._empty_label.setStyleSheet("color: #6b7280;")
        self._empty_label.hide()

        self._rename_button = QPushButton("Rename", self)
        self._rename_button.clicked.connect(lambda: self._emit_for_current(self.rename_requested))
        self._delete_button = QPushButton("Delete", self)
        self._delete_button.clicked.connect(lambda: self._emit_for_current(self.delete_requested))
        delete_all_button = QPushButton("Delete all", self)
        delete_all_button.clicked.connect(self.delete_all_requested.emit)

        row = QHBoxLayout()
        row.addWidget(self._rename_button)
        row.addWidget(self._delete_button)

        layout = QVBoxLayout(self)
        layout.setContentsMargins(4, 4, 4, 4)
        layout.setSpacing(8)
        for widget in (self._title_label, new_button, self._search):
            layout.addWidget(widget)
        layout.addWidget(self._list, stretch=1)
        layout.addWidget(self._empty_label)
        layout.addLayout(row)
        layout.addWidget(delete_all_button)
        self._sync_buttons()

    def set_title(self, text: str) -> None:
        self._title_label.setText(text)

    @property
    def search_text(self) -> str:
        return self._search.text()

    @property
    def current_conversation_id(self) -> str | None:
        item = self._list.currentItem()
        return item.data(Qt.UserRole) if item is not None else None

    def set_conversations(self, conversations: Iterable[Conversation], active_id: str | None = None) -> None:
        keep = active_id or self.current_conversation_id
        # 一覧の作り直しで conversation_selected が飛ばないようにする
        self._list.blockSignals(True)
        try:
            self._list.clear()
            self._items.clear()
            for conversation in conversations:
                item = QListWidgetItem(self._label_for(conversation))
                item.setData(Qt.UserRole, conversation.conversation_id)
                item.setToolTip(conversation.preview)
                self._list.addItem(item)
                self._items[conversation.conversation_id] = (item, conversation)
            if keep in self._items:
                self._list.setCurrentItem(self._items[keep][0])
        finally:
            self._list.blockSignals(False)
        self._empty_label.setVisible(not self._items)
        self._sync_buttons()

    def set_busy_ids(self, busy_ids: Iterable[str]) -> None:
        busy = set(busy_ids)
        changed = self._busy_ids ^ busy
        self._busy_ids = busy
        for conversation_id in changed:
            entry = self._items.get(conversation_id)
            if entry is not None:
                item, conversation = entry
                item.setText(self._label_for(conversation))

    def _label_for(self, conversation: Conversation) -> str:
        try:
            stamp = datetime.fromisoformat(conversation.last_activity).astimezone().strftime("%Y-%m-%d %H:%M")
        except ValueError:
            stamp = conversation.last_activity
        marker = BUSY_MARKER if conversation.conversation_id in self._busy_ids else ""
        return f"{marker}{conversation.title}\n{stamp}"

    def _on_current_changed(self, current: QListWidgetItem | None, _previous: QListWidgetItem | None) -> None:
        self._sync_buttons()
        if current is not None:
            self.conversation_selected.emit(current.data(Qt.UserRole))

    def _emit_for_current(self, signal) -> None:
        conversation_id = self.current_conversation_id
        if conversation_id:
            signal.emit(conversation_id)

    def _sync_buttons(self) -> None:
        has_selection = self.current_conversation_id is not None
        self._rename_button.setEnabled(has_selection)
        self._delete_button.setEnabled(has_selection)
