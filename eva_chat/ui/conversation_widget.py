from __future__ import annotations

import html
from typing import Iterable

import markdown

from PySide6.QtCore import Signal
from PySide6.QtGui import QFont, QTextCursor
from PySide6.QtWidgets import (
    QComboBox,
    QHBoxLayout,
    QInputDialog,
    QLabel,
    QPlainTextEdit,
    QPushButton,
    QSizePolicy,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from ..models import ChatMessage, Conversation

PREVIEW_CHARS = 60
FONT_SIZES = (10, 12, 13, 14, 16, 18, 20, 22, 24)
DEFAULT_FONT_SIZE = 13


class ConversationWidget(QWidget):
    message_submitted = Signal(str)
    delete_message_requested = Signal(str, str)

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self._current_conversation: Conversation | None = None
        self._assistant_label = "Eva"
        self._accent_color = "#2563eb"
        self._is_busy = False
        self._html_cache: dict[tuple[str, str], str] = {}

        self._transcript = QTextEdit(self)
        self._transcript.setReadOnly(True)
        self._transcript.setMinimumHeight(300)
        self._font = QFont()
        self._font.setPointSize(DEFAULT_FONT_SIZE)
        self._transcript.setFont(self._font)

        self._status_label = QLabel("", self)
        self._status_label.setObjectName("StatusLabel")
        self._status_label.setStyleSheet("color: #6b7280;")
        self._error_label = QLabel("", self)
        self._error_label.setObjectName("ErrorLabel")
        self._error_label.setWordWrap(True)
        self._error_label.hide()

        layout = QVBoxLayout(self)
        layout.setContentsMargins(8, 8, 8, 8)
        layout.setSpacing(10)
        layout.addLayout(self._build_header())
        layout.addWidget(self._transcript, stretch=1)
        layout.addWidget(self._status_label)
        layout.addWidget(self._error_label)
        layout.addLayout(self._build_composer())
        self._refresh_controls()

    def _build_header(self) -> QHBoxLayout:
        self._title_label = QLabel("", self)
        self._title_label.setStyleSheet("font-weight: 600; font-size: 15px;")
        self._title_label.setSizePolicy(QSizePolicy.Expanding, QSizePolicy.Preferred)

        self._font_size_combo = QComboBox(self)
        self._font_size_combo.addItems([str(size) for size in FONT_SIZES])
        self._font_size_combo.setCurrentText(str(DEFAULT_FONT_SIZE))
        self._font_size_combo.currentTextChanged.connect(self._change_font_size)

        header = QHBoxLayout()
        header.setContentsMargins(8, 0, 8, 0)
        header.addWidget(self._title_label)
        header.addStretch()
        header.addWidget(QLabel("Font size:", self))
        header.addWidget(self._font_size_combo)
        return header

    def _build_composer(self) -> QHBoxLayout:
        self._input = QPlainTextEdit(self)
        self._input.setPlaceholderText("Type your message here...")
        self._input.setFixedHeight(100)

        self._send_button = QPushButton("Send", self)
        self._send_button.setDefault(True)
        self._send_button.clicked.connect(self._handle_submit)
        self._delete_button = QPushButton("Delete message...", self)
        self._delete_button.clicked.connect(self._handle_delete_message)

        buttons = QVBoxLayout()
        buttons.setSpacing(6)
        buttons.addWidget(self._send_button)
        buttons.addWidget(self._delete_button)
        buttons.addStretch()

        composer = QHBoxLayout()
        composer.setSpacing(8)
        composer.addWidget(self._input, stretch=1)
        composer.addLayout(buttons)
        return composer

    # Public API ---------------------------------------------------------
    @property
    def conversation_id(self) -> str | None:
        if self._current_conversation is None:
            return None
        return self._current_conversation.conversation_id

    def display_conversation(self, conversation: Conversation) -> None:
        self._current_conversation = conversation
        self._title_label.setText(conversation.title)
        self._render_messages(conversation.messages)

    def refresh(self) -> None:
        if self._current_conversation is not None:
            self.display_conversation(self._current_conversation)

    def set_busy(self, is_busy: bool, status_text: str | None = None) -> None:
        self._is_busy = is_busy
        self._refresh_controls()
        if status_text:
            self._status_label.setText(status_text)
        elif not is_busy:
            self._status_label.clear()

    def set_error(self, text: str | None) -> None:
        if text:
            self._error_label.setText(text)
            self._error_label.show()
        else:
            self._error_label.clear()
            self._error_label.hide()

    def set_assistant_label(self, label: str) -> None:
        normalized = (label or "Eva").strip() or "Eva"
        if normalized == self._assistant_label:
            return
        self._assistant_label = normalized
        self._html_cache.clear()
        self.refresh()

    def set_accent_color(self, color: str) -> None:
        if color == self._accent_color:
            return
        self._accent_color = color
        self._html_cache.clear()
        self.refresh()

    def restore_input(self, text: str) -> None:
        # 送信失敗時に入力内容を書き戻して再送しやすくする
        if text and not self._input.toPlainText().strip():
            self._input.setPlainText(text)
            self._input.moveCursor(QTextCursor.End)

    # Internal helpers ---------------------------------------------------
    def _change_font_size(self, size_str: str) -> None:
        try:
            size = int(size_str)
        except ValueError:
            return
        self._font.setPointSize(size)
        self._transcript.setFont(self._font)

    def _handle_submit(self) -> None:
        text = self._input.toPlainText().strip()
        if not text or self._is_busy:
            return
        self._input.clear()
        self.set_error(None)
        # MainWindow が受け取って ChatSession に送信を依頼する
        self.message_submitted.emit(text)

    def _handle_delete_message(self) -> None:
        conversation = self._current_conversation
        if conversation is None:
            return
        candidates = conversation.user_messages()
        if not candidates:
            return
        labels = [self._preview(message) for message in candidates]
        choice, accepted = QInputDialog.getItem(
            self, "Delete message", "Move this message to the trash:", labels, len(labels) - 1, False
        )
        if not accepted:
            return
        message = candidates[labels.index(choice)]
        self.delete_message_requested.emit(conversation.conversation_id, message.message_id)

    @staticmethod
    def _preview(message: ChatMessage) -> str:
        clean = " ".join(message.content.split())
        label = clean if len(clean) <= PREVIEW_CHARS else clean[:PREVIEW_CHARS] + "..."
        return f"{message.created_at[:16].replace('T', ' ')}  {label}"

    def _render_messages(self, messages: Iterable[ChatMessage]) -> None:
        scrollbar = self._transcript.verticalScrollBar()
        follow = scrollbar.value() >= scrollbar.maximum() - 4
        position = scrollbar.value()
        # 一文字ごとに再描画されるので 1 回の setHtml でまとめて描く
        self._transcript.setHtml("".join(self._format_message(message) for message in messages))
        if follow:
            scrollbar.setValue(scrollbar.maximum())
        else:
            scrollbar.setValue(position)

    def _format_message(self, message: ChatMessage) -> str:
        key = (message.message_id, message.content)
        if not message.pending and key in self._html_cache:
            return self._html_cache[key]

        if message.role == "user":
            role_label = "You"
            color = "#374151"
            content = html.escape(message.content).replace("\n", "<br>")
        else:
            role_label = self._assistant_label
            color = self._accent_color
            if message.pending:
                # 表示途中は Markdown が壊れやすいのでプレーンテキストで出す
                content = html.escape(message.content).replace("\n", "<br>") + " ▍"
            else:
                content = markdown.markdown(
                    message.content,
                    extensions=["fenced_code", "tables", "nl2br"],
                )
                # QTextEdit の段落と競合しないよう外側の <p> を外す
                if content.startswith("<p>") and content.endswith("</p>"):
                    content = content[3:-4]

        if content.strip().endswith(("</ul>", "</ol>")):
            content += '<div style="height:0; line-height:0; margin:0; padding:0;"></div>'

        role_html = f'<p style="margin-bottom:0px;"><b style="color:{color}">{html.escape(role_label)}</b></p>'
        rendered = f'<div style="margin-bottom: 10px;">{role_html}{content}</div>'
        if not message.pending:
            self._html_cache[key] = rendered
        return rendered

    def _refresh_controls(self) -> None:
        self._send_button.setDisabled(self._is_busy)
        self._input.setReadOnly(self._is_busy)
