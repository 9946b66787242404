"""Shared fixtures for testing."""

from __future__ import annotations

import os
import threading
import time

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest
from PySide6.QtCore import QCoreApplication, QEventLoop

from eva_chat.controller import ConversationController
from eva_chat.history import SessionStore
from eva_chat.storage import MemoryStorage


class StubClient:
    """Completion collaborator double; optionally blocks until released."""

    def __init__(self, reply: str = "Hi there", error: Exception | None = None, gated: bool = False) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[tuple[list, str | None]] = []
        self._gate = threading.Event()
        if not gated:
            self._gate.set()

    def release(self) -> None:
        self._gate.set()

    def generate_reply(self, messages, system_prompt):
        self.calls.append((list(messages), system_prompt))
        self._gate.wait(5)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture(scope="session")
def qt_app():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def wait_until(qt_app):
    """Pump the Qt event loop until ``predicate`` holds."""

    def _wait(predicate, timeout: float = 5.0) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("Condition not met before timeout")
            QCoreApplication.processEvents(QEventLoop.AllEvents, 50)
            time.sleep(0.002)

    return _wait


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage):
    return SessionStore(storage)


@pytest.fixture
def make_controller(qt_app, store):
    created: list[ConversationController] = []

    def _factory(client, **kwargs):
        kwargs.setdefault("reveal_interval_ms", 0)
        controller = ConversationController(store, client, **kwargs)
        created.append(controller)
        return controller

    yield _factory
    for controller in created:
        controller.shutdown()
