from __future__ import annotations

import logging
from typing import Any, Callable

from .errors import PersistenceReadError
from .models import UserSettings
from .storage import JsonRepository, KeyValueStorage

logger = logging.getLogger(__name__)

SETTINGS_KEY = "user_settings"

SettingsListener = Callable[[UserSettings, UserSettings], None]


class PreferencesStore:
    """User-facing toggles (sound, notifications, history, telemetry, theme).

    Loaded once at construction and persisted after every update. Listeners
    receive ``(previous, current)``.
    """

    def __init__(self, storage: KeyValueStorage) -> None:
        self._repository = JsonRepository(storage, SETTINGS_KEY)
        self._settings = self._load()
        self._listeners: list[SettingsListener] = []

    def get(self) -> UserSettings:
        return self._settings

    def update(self, **partial: Any) -> UserSettings:
        previous = self._settings
        current = previous.merged(partial)
        if current == previous:
            return current
        self._settings = current
        self._repository.save(current.to_dict())
        logger.debug("User settings updated: %s", partial)
        for listener in list(self._listeners):
            listener(previous, current)
        return current

    def add_listener(self, listener: SettingsListener) -> None:
        self._listeners.append(listener)

    def _load(self) -> UserSettings:
        try:
            payload = self._repository.load()
        except PersistenceReadError as exc:
            logger.warning("Using default user settings: %s", exc)
            return UserSettings()
        if not isinstance(payload, dict):
            return UserSettings()
        return UserSettings.from_dict(payload)
