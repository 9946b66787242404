from __future__ import annotations

from datetime import datetime
from typing import Iterable

from PySide6.QtCore import Qt, Signal
from PySide6.QtWidgets import (
    QCheckBox,
    QComboBox,
    QDialog,
    QDialogButtonBox,
    QFormLayout,
    QGroupBox,
    QHBoxLayout,
    QLabel,
    QListWidget,
    QListWidgetItem,
    QPushButton,
    QTabWidget,
    QVBoxLayout,
    QWidget,
)

from ..models import ColorTheme, TrashRecord, UserSettings


class SettingsDialog(QDialog):
    """General toggles plus the trash ("Message History") tab."""

    settings_changed = Signal(dict)
    restore_requested = Signal(str)
    purge_requested = Signal(str)
    purge_all_requested = Signal()

    def __init__(self, settings: UserSettings, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self.setWindowTitle("Settings")
        self.setMinimumSize(520, 420)

        self._sound = QCheckBox("Sound notifications", self)
        self._desktop = QCheckBox("Desktop notifications", self)
        self._persist = QCheckBox("Save chat history", self)
        self._telemetry = QCheckBox("Allow anonymous data collection to improve the service", self)
        self._theme = QComboBox(self)
        for theme in ColorTheme:
            self._theme.addItem(theme.value.capitalize(), theme.value)

        notifications = QGroupBox("Notifications", self)
        notifications_layout = QVBoxLayout(notifications)
        notifications_layout.addWidget(self._sound)
        notifications_layout.addWidget(self._desktop)

        privacy = QGroupBox("Privacy", self)
        privacy_layout = QVBoxLayout(privacy)
        privacy_layout.addWidget(self._persist)
        privacy_layout.addWidget(self._telemetry)

        appearance = QGroupBox("Appearance", self)
        appearance_layout = QFormLayout(appearance)
        appearance_layout.addRow("Color theme", self._theme)

        general = QWidget(self)
        general_layout = QVBoxLayout(general)
        general_layout.addWidget(notifications)
        general_layout.addWidget(privacy)
        general_layout.addWidget(appearance)
        general_layout.addStretch()

        self._trash_list = QListWidget(self)
        self._trash_list.itemSelectionChanged.connect(self._update_trash_buttons)
        self._trash_empty = QLabel("No deleted messages", self)
        self._trash_empty.setStyleSheet("color: #6b7280;")
        self._restore_button = QPushButton("Restore", self)
        self._restore_button.clicked.connect(self._on_restore_clicked)
        self._purge_button = QPushButton("Delete permanently", self)
        self._purge_button.clicked.connect(self._on_purge_clicked)
        self._purge_all_button = QPushButton("Empty trash", self)
        self._purge_all_button.clicked.connect(self.purge_all_requested.emit)

        trash_buttons = QHBoxLayout()
        trash_buttons.addWidget(self._restore_button)
        trash_buttons.addWidget(self._purge_button)
        trash_buttons.addStretch()
        trash_buttons.addWidget(self._purge_all_button)

        trash = QWidget(self)
        trash_layout = QVBoxLayout(trash)
        trash_layout.addWidget(self._trash_list, stretch=1)
        trash_layout.addWidget(self._trash_empty)
        trash_layout.addLayout(trash_buttons)

        tabs = QTabWidget(self)
        tabs.addTab(general, "General")
        tabs.addTab(trash, "Message History")

        buttons = QDialogButtonBox(QDialogButtonBox.Close, self)
        buttons.rejected.connect(self.reject)

        layout = QVBoxLayout(self)
        layout.addWidget(tabs)
        layout.addWidget(buttons)

        self.set_settings(settings)
        for checkbox in (self._sound, self._desktop, self._persist, self._telemetry):
            checkbox.toggled.connect(self._emit_settings)
        self._theme.currentIndexChanged.connect(self._emit_settings)
        self._update_trash_buttons()

    def set_settings(self, settings: UserSettings) -> None:
        widgets = (self._sound, self._desktop, self._persist, self._telemetry, self._theme)
        for widget in widgets:
            widget.blockSignals(True)
        self._sound.setChecked(settings.sound_enabled)
        self._desktop.setChecked(settings.desktop_notifications_enabled)
        self._persist.setChecked(settings.persist_history)
        self._telemetry.setChecked(settings.allow_telemetry)
        self._theme.setCurrentIndex(max(0, self._theme.findData(settings.color_theme.value)))
        for widget in widgets:
            widget.blockSignals(False)

    def set_desktop_notifications_available(self, available: bool) -> None:
        self._desktop.setEnabled(available)
        if not available:
            self._desktop.setToolTip("Desktop notifications are not supported on this system.")

    def set_trash_records(self, records: Iterable[TrashRecord]) -> None:
        self._trash_list.clear()
        for record in records:
            item = QListWidgetItem(self._format_record(record))
            item.setData(Qt.UserRole, record.record_id)
            self._trash_list.addItem(item)
        self._trash_empty.setVisible(self._trash_list.count() == 0)
        self._update_trash_buttons()

    @staticmethod
    def _format_record(record: TrashRecord) -> str:
        try:
            deleted = datetime.fromisoformat(record.deleted_at).astimezone().strftime("%Y-%m-%d %H:%M")
        except ValueError:
            deleted = record.deleted_at
        if record.is_conversation:
            return f"[Conversation] {record.title}  ({deleted})"
        content = " ".join(record.content.split())
        if len(content) > 80:
            content = content[:80] + "..."
        return f"{content}  (from \"{record.title}\", {deleted})"

    def _selected_record_id(self) -> str | None:
        item = self._trash_list.currentItem()
        return item.data(Qt.UserRole) if item else None

    def _on_restore_clicked(self) -> None:
        record_id = self._selected_record_id()
        if record_id:
            self.restore_requested.emit(record_id)

    def _on_purge_clicked(self) -> None:
        record_id = self._selected_record_id()
        if record_id:
            self.purge_requested.emit(record_id)

    def _update_trash_buttons(self) -> None:
        selected = self._selected_record_id() is not None
        self._restore_button.setEnabled(selected)
        self._purge_button.setEnabled(selected)
        self._purge_all_button.setEnabled(self._trash_list.count() > 0)

    def _emit_settings(self) -> None:
        self.settings_changed.emit(
            {
                "sound_enabled": self._sound.isChecked(),
                "desktop_notifications_enabled": self._desktop.isChecked(),
                "persist_history": self._persist.isChecked(),
                "allow_telemetry": self._telemetry.isChecked(),
                "color_theme": self._theme.currentData(),
            }
        )
