from __future__ import annotations

import logging

from PySide6.QtCore import Qt
from PySide6.QtGui import QAction, QCloseEvent
from PySide6.QtWidgets import (
    QApplication,
    QInputDialog,
    QMainWindow,
    QMessageBox,
    QSplitter,
    QStyle,
    QSystemTrayIcon,
)

from ..config import AppConfig
from ..controller import NOTIFY_MESSAGE_RECEIVED
from ..errors import EvaChatError
from ..models import UserSettings
from ..session import ChatSession
from .conversation_widget import ConversationWidget
from .history_panel import HistoryPanel
from .intro_dialog import IntroDialog
from .settings_dialog import SettingsDialog
from .sound_player import SoundPlayer
from .theme import accent_color, build_stylesheet

logger = logging.getLogger(__name__)


class MainWindow(QMainWindow):
    def __init__(self, config: AppConfig, session: ChatSession | None = None) -> None:
        super().__init__()
        self._config = config
        self._session = session or ChatSession.from_config(config, parent=self)
        self._pending_inputs: dict[str, str] = {}
        self._settings_dialog: SettingsDialog | None = None

        self.setWindowTitle(f"{config.assistant_name} - Mental Health Support")
        self.resize(1100, 760)

        self._history_panel = HistoryPanel(self)
        self._history_panel.set_title(config.assistant_name)
        self._conversation_widget = ConversationWidget(self)
        self._conversation_widget.set_assistant_label(config.assistant_name)

        splitter = QSplitter(Qt.Horizontal, self)
        splitter.addWidget(self._history_panel)
        splitter.addWidget(self._conversation_widget)
        splitter.setStretchFactor(0, 0)
        splitter.setStretchFactor(1, 1)
        splitter.setSizes([280, 820])
        self.setCentralWidget(splitter)

        settings_action = QAction("Settings", self)
        settings_action.triggered.connect(self._open_settings)
        self.menuBar().addAction(settings_action)

        self._sound_player = SoundPlayer(config.sound_volume, self)
        self._sound_player.error.connect(lambda message: logger.warning("Sound playback failed: %s", message))
        self._tray: QSystemTrayIcon | None = None
        if QSystemTrayIcon.isSystemTrayAvailable():
            self._tray = QSystemTrayIcon(self.style().standardIcon(QStyle.SP_MessageBoxInformation), self)

        self._connect_signals()
        self._apply_settings(self._session.get_settings())
        self._refresh_history()
        self._show_active()

        if config.show_intro:
            IntroDialog(config.assistant_name, self).open()

    # Wiring -------------------------------------------------------------
    def _connect_signals(self) -> None:
        session = self._session
        controller = session.controller

        self._history_panel.conversation_selected.connect(self._handle_conversation_selected)
        self._history_panel.new_conversation_requested.connect(self._handle_new_conversation)
        self._history_panel.rename_requested.connect(self._handle_rename)
        self._history_panel.delete_requested.connect(self._handle_delete)
        self._history_panel.delete_all_requested.connect(self._handle_delete_all)
        self._history_panel.search_changed.connect(lambda _text: self._refresh_history())

        self._conversation_widget.message_submitted.connect(self._handle_message_submitted)
        self._conversation_widget.delete_message_requested.connect(self._handle_delete_message)

        session.conversations_changed.connect(self._refresh_history)
        session.active_changed.connect(lambda _cid: self._show_active())
        session.trash_changed.connect(self._refresh_trash)
        session.settings_changed.connect(self._apply_settings)

        controller.conversation_updated.connect(self._handle_conversation_updated)
        controller.message_revealed.connect(lambda cid, _mid: self._handle_conversation_updated(cid))
        controller.busy_changed.connect(self._handle_busy_changed)
        controller.exchange_failed.connect(self._handle_exchange_failed)
        controller.exchange_finished.connect(lambda cid: self._pending_inputs.pop(cid, None))
        controller.notification_requested.connect(self._handle_notification)

    # Conversation handlers ----------------------------------------------
    def _handle_conversation_selected(self, conversation_id: str) -> None:
        if conversation_id == self._session.active_conversation().conversation_id:
            return
        try:
            self._session.select_conversation(conversation_id)
        except EvaChatError as exc:
            logger.warning("Cannot select conversation: %s", exc)

    def _handle_new_conversation(self) -> None:
        self._session.new_conversation()

    def _handle_rename(self, conversation_id: str) -> None:
        conversation = self._session.store.get(conversation_id)
        if conversation is None:
            return
        title, accepted = QInputDialog.getText(self, "Rename conversation", "Title:", text=conversation.title)
        if accepted and title.strip():
            self._session.rename_conversation(conversation_id, title)
            self._show_active()

    def _handle_delete(self, conversation_id: str) -> None:
        self._pending_inputs.pop(conversation_id, None)
        self._session.delete_conversation(conversation_id)

    def _handle_delete_all(self) -> None:
        answer = QMessageBox.question(
            self,
            "Delete all conversations",
            "Are you sure you want to delete all conversations? They will be moved to the trash.",
        )
        if answer != QMessageBox.Yes:
            return
        self._pending_inputs.clear()
        self._session.delete_all_conversations()

    def _handle_message_submitted(self, text: str) -> None:
        conversation_id = self._session.active_conversation().conversation_id
        if self._session.submit(text):
            self._pending_inputs[conversation_id] = text

    def _handle_delete_message(self, conversation_id: str, message_id: str) -> None:
        try:
            self._session.delete_message(conversation_id, message_id)
        except EvaChatError as exc:
            QMessageBox.warning(self, "Delete message", str(exc))
            return
        self._show_active()

    def _handle_conversation_updated(self, conversation_id: str) -> None:
        # 表示中の会話だけ再描画する（裏の会話は選択時に描画される）
        if conversation_id == self._conversation_widget.conversation_id:
            self._conversation_widget.refresh()

    def _handle_busy_changed(self, conversation_id: str, busy: bool) -> None:
        self._history_panel.set_busy_ids(
            c.conversation_id for c in self._session.list_conversations() if self._session.is_busy(c.conversation_id)
        )
        if conversation_id == self._conversation_widget.conversation_id:
            self._conversation_widget.set_busy(busy, f"{self._config.assistant_name} is typing..." if busy else None)

    def _handle_exchange_failed(self, conversation_id: str, message: str) -> None:
        text = self._pending_inputs.pop(conversation_id, "")
        if conversation_id != self._conversation_widget.conversation_id:
            return
        self._conversation_widget.set_error(message)
        self._conversation_widget.restore_input(text)

    def _handle_notification(self, conversation_id: str, kind: str) -> None:
        settings = self._session.get_settings()
        if settings.sound_enabled:
            self._sound_player.play(kind)
        if (
            kind == NOTIFY_MESSAGE_RECEIVED
            and settings.desktop_notifications_enabled
            and self._tray is not None
            and not self.isActiveWindow()
        ):
            conversation = self._session.store.get(conversation_id)
            title = conversation.title if conversation else self._config.assistant_name
            self._tray.showMessage(
                f"New message from {self._config.assistant_name}",
                title,
                QSystemTrayIcon.Information,
                5000,
            )

    # Rendering ----------------------------------------------------------
    def _refresh_history(self) -> None:
        conversations = self._session.search_conversations(self._history_panel.search_text)
        active_id = self._session.active_conversation().conversation_id
        self._history_panel.set_conversations(conversations, active_id)

    def _show_active(self) -> None:
        conversation = self._session.active_conversation()
        self._conversation_widget.display_conversation(conversation)
        busy = self._session.is_busy(conversation.conversation_id)
        self._conversation_widget.set_busy(busy, f"{self._config.assistant_name} is typing..." if busy else None)
        self._conversation_widget.set_error(self._session.last_error(conversation.conversation_id))
        self._refresh_history()

    def _refresh_trash(self) -> None:
        if self._settings_dialog is not None:
            self._settings_dialog.set_trash_records(self._session.trash_records())
        self._show_active()

    # Settings -----------------------------------------------------------
    def _open_settings(self) -> None:
        if self._settings_dialog is None:
            dialog = SettingsDialog(self._session.get_settings(), self)
            dialog.set_desktop_notifications_available(self._tray is not None)
            dialog.settings_changed.connect(self._handle_settings_edited)
            dialog.restore_requested.connect(self._handle_restore)
            dialog.purge_requested.connect(self._session.purge)
            dialog.purge_all_requested.connect(self._session.purge_all)
            self._settings_dialog = dialog
        self._settings_dialog.set_settings(self._session.get_settings())
        self._settings_dialog.set_trash_records(self._session.trash_records())
        self._settings_dialog.show()
        self._settings_dialog.raise_()

    def _handle_settings_edited(self, values: dict) -> None:
        try:
            self._session.update_settings(**values)
        except (TypeError, ValueError) as exc:
            logger.warning("Rejected settings update: %s", exc)

    def _handle_restore(self, record_id: str) -> None:
        try:
            conversation = self._session.restore(record_id)
        except EvaChatError as exc:
            QMessageBox.warning(self, "Restore", str(exc))
            return
        self._session.select_conversation(conversation.conversation_id)

    def _apply_settings(self, settings: UserSettings) -> None:
        app = QApplication.instance()
        if isinstance(app, QApplication):
            app.setStyleSheet(build_stylesheet(settings.color_theme))
        self._conversation_widget.set_accent_color(accent_color(settings.color_theme))
        if self._tray is not None:
            self._tray.setVisible(settings.desktop_notifications_enabled)

    def closeEvent(self, event: QCloseEvent) -> None:  # noqa: N802 - Qt override
        self._session.shutdown()
        self._sound_player.close()
        super().closeEvent(event)
