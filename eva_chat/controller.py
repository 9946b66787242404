from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from functools import partial

from PySide6.QtCore import QObject, QThread, QTimer, Signal, Slot

from .errors import BusyError, EmptyInputError
from .history import SessionStore, welcome_message
from .llm_client import CompletionClient
from .models import ChatMessage, new_id
from .preferences import PreferencesStore
from .prompts import SEND_FAILED_MESSAGE, SYSTEM_PROMPT
from .workers import LLMWorker

logger = logging.getLogger(__name__)

NOTIFY_MESSAGE_SENT = "message_sent"
NOTIFY_MESSAGE_RECEIVED = "message_received"
SHUTDOWN_WAIT_MS = 2000


class ExchangeState(str, Enum):
    IDLE = "idle"
    AWAITING_REPLY = "awaiting_reply"
    REVEALING = "revealing"


@dataclass
class _Exchange:
    exchange_id: str
    conversation_id: str
    user_message_id: str
    previous_title: str
    state: ExchangeState = ExchangeState.AWAITING_REPLY
    reply: str = ""
    assistant_message_id: str | None = None
    position: int = 0
    timer: QTimer | None = None


class ConversationController(QObject):
    """Runs user message → assistant reply round-trips.

    Each conversation moves through ``IDLE → AWAITING_REPLY → REVEALING →
    IDLE``; a failed call goes straight back to ``IDLE`` after the optimistic
    user message is rolled back. At most one exchange per conversation is in
    flight, while different conversations proceed independently. Worker
    results are matched by conversation id and exchange id, never by which
    conversation happens to be active.
    """

    conversation_updated = Signal(str)
    message_revealed = Signal(str, str)
    busy_changed = Signal(str, bool)
    exchange_finished = Signal(str)
    exchange_failed = Signal(str, str)
    notification_requested = Signal(str, str)

    def __init__(
        self,
        store: SessionStore,
        client: CompletionClient,
        preferences: PreferencesStore | None = None,
        system_prompt: str | None = SYSTEM_PROMPT,
        reveal_interval_ms: int = 30,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._store = store
        self._client = client
        self._preferences = preferences
        self._system_prompt = system_prompt
        self._reveal_interval_ms = max(0, reveal_interval_ms)
        self._exchanges: dict[str, _Exchange] = {}
        self._errors: dict[str, str] = {}
        self._threads: list[tuple[QThread, LLMWorker]] = []

    # Queries ------------------------------------------------------------
    def state(self, conversation_id: str) -> ExchangeState:
        exchange = self._exchanges.get(conversation_id)
        return exchange.state if exchange else ExchangeState.IDLE

    def is_busy(self, conversation_id: str) -> bool:
        return conversation_id in self._exchanges

    def last_error(self, conversation_id: str) -> str | None:
        return self._errors.get(conversation_id)

    # Commands -----------------------------------------------------------
    def submit(self, conversation_id: str, text: str) -> ChatMessage:
        content = text.strip()
        if not content:
            raise EmptyInputError("Message is empty.")
        conversation = self._store.require(conversation_id)
        if self.is_busy(conversation_id):
            raise BusyError(conversation_id)

        previous_title = conversation.title
        message = ChatMessage(role="user", content=content)
        conversation.append_message(message)
        exchange = _Exchange(
            exchange_id=new_id(),
            conversation_id=conversation_id,
            user_message_id=message.message_id,
            previous_title=previous_title,
        )
        self._exchanges[conversation_id] = exchange
        self._errors.pop(conversation_id, None)
        self._store.touch(conversation_id)

        self.busy_changed.emit(conversation_id, True)
        self.conversation_updated.emit(conversation_id)
        self._request_notification(conversation_id, NOTIFY_MESSAGE_SENT)

        history = [replace(m) for m in conversation.messages if not m.pending]
        self._start_worker(exchange, history)
        return message

    def cancel(self, conversation_id: str) -> None:
        """Abandon the exchange of ``conversation_id`` without surfacing an error."""

        exchange = self._exchanges.pop(conversation_id, None)
        if exchange is None:
            return
        self._stop_timer(exchange)
        conversation = self._store.get(conversation_id)
        if conversation is not None:
            if exchange.state is ExchangeState.REVEALING:
                self._finalize_message(exchange)
            else:
                self._rollback(exchange)
            self._store.save()
            self.conversation_updated.emit(conversation_id)
        logger.debug("Cancelled exchange %s for %s", exchange.exchange_id, conversation_id)
        self.busy_changed.emit(conversation_id, False)

    def shutdown(self, wait_ms: int = SHUTDOWN_WAIT_MS) -> None:
        for conversation_id in list(self._exchanges):
            self.cancel(conversation_id)
        stragglers: list[tuple[QThread, LLMWorker]] = []
        for thread, worker in self._threads:
            thread.quit()
            if not thread.wait(wait_ms):
                stragglers.append((thread, worker))
        if stragglers:
            # 応答待ちのスレッドは待たずに切り離す。結果は破棄される
            logger.warning("%d request thread(s) still running at shutdown", len(stragglers))
            for thread, _worker in stragglers:
                thread.setParent(None)
        self._threads = stragglers

    # Worker plumbing ----------------------------------------------------
    def _start_worker(self, exchange: _Exchange, history: list[ChatMessage]) -> None:
        self._prune_threads()
        thread = QThread(self)
        worker = LLMWorker(
            self._client,
            exchange.conversation_id,
            exchange.exchange_id,
            history,
            self._system_prompt,
        )
        worker.moveToThread(thread)
        thread.started.connect(worker.run)
        worker.finished.connect(self._on_reply)
        worker.failed.connect(self._on_failure)
        worker.finished.connect(thread.quit)
        worker.failed.connect(thread.quit)
        self._threads.append((thread, worker))
        thread.start()

    def _prune_threads(self) -> None:
        alive: list[tuple[QThread, LLMWorker]] = []
        for thread, worker in self._threads:
            if thread.isFinished():
                thread.deleteLater()
            else:
                alive.append((thread, worker))
        self._threads = alive

    def _live_exchange(self, conversation_id: str, exchange_id: str) -> _Exchange | None:
        exchange = self._exchanges.get(conversation_id)
        if exchange is None or exchange.exchange_id != exchange_id:
            return None
        return exchange

    @Slot(str, str, str)
    def _on_reply(self, conversation_id: str, exchange_id: str, reply: str) -> None:
        exchange = self._live_exchange(conversation_id, exchange_id)
        if exchange is None:
            logger.debug("Discarding reply for abandoned exchange %s", exchange_id)
            return
        conversation = self._store.get(conversation_id)
        if conversation is None:
            # 応答待ちの間に会話が削除された
            self._exchanges.pop(conversation_id, None)
            self.busy_changed.emit(conversation_id, False)
            return

        message = ChatMessage(role="assistant", content="", pending=True)
        conversation.append_message(message)
        exchange.assistant_message_id = message.message_id
        exchange.reply = reply
        exchange.state = ExchangeState.REVEALING
        self.conversation_updated.emit(conversation_id)

        timer = QTimer(self)
        timer.setInterval(self._reveal_interval_ms)
        timer.timeout.connect(partial(self._reveal_step, exchange))
        exchange.timer = timer
        timer.start()

    @Slot(str, str, str)
    def _on_failure(self, conversation_id: str, exchange_id: str, detail: str) -> None:
        exchange = self._live_exchange(conversation_id, exchange_id)
        if exchange is None:
            logger.debug("Discarding failure for abandoned exchange %s", exchange_id)
            return
        self._exchanges.pop(conversation_id, None)
        logger.warning("Completion failed for conversation %s: %s", conversation_id, detail)
        if self._store.get(conversation_id) is None:
            self.busy_changed.emit(conversation_id, False)
            return

        self._rollback(exchange)
        self._store.save()
        self._errors[conversation_id] = SEND_FAILED_MESSAGE
        self.busy_changed.emit(conversation_id, False)
        self.conversation_updated.emit(conversation_id)
        self.exchange_failed.emit(conversation_id, SEND_FAILED_MESSAGE)

    # Reveal -------------------------------------------------------------
    def _reveal_step(self, exchange: _Exchange) -> None:
        if self._exchanges.get(exchange.conversation_id) is not exchange:
            self._stop_timer(exchange)
            return
        conversation = self._store.get(exchange.conversation_id)
        message = conversation.find_message(exchange.assistant_message_id or "") if conversation else None
        if message is None:
            self._exchanges.pop(exchange.conversation_id, None)
            self._stop_timer(exchange)
            self.busy_changed.emit(exchange.conversation_id, False)
            return

        exchange.position += 1
        message.content = exchange.reply[: exchange.position]
        self.message_revealed.emit(exchange.conversation_id, message.message_id)
        if exchange.position >= len(exchange.reply):
            self._settle(exchange)

    def _settle(self, exchange: _Exchange) -> None:
        conversation_id = exchange.conversation_id
        self._stop_timer(exchange)
        self._finalize_message(exchange)
        self._exchanges.pop(conversation_id, None)
        self._store.touch(conversation_id)
        self.busy_changed.emit(conversation_id, False)
        self.conversation_updated.emit(conversation_id)
        self.exchange_finished.emit(conversation_id)
        self._request_notification(conversation_id, NOTIFY_MESSAGE_RECEIVED)

    def _finalize_message(self, exchange: _Exchange) -> None:
        conversation = self._store.get(exchange.conversation_id)
        if conversation is None or exchange.assistant_message_id is None:
            return
        message = conversation.find_message(exchange.assistant_message_id)
        if message is not None:
            message.content = exchange.reply
            message.pending = False

    def _rollback(self, exchange: _Exchange) -> None:
        conversation = self._store.get(exchange.conversation_id)
        if conversation is None:
            return
        conversation.remove_message(exchange.user_message_id)
        if not conversation.title_locked:
            # 取り消した発話から付けたタイトルも元に戻す
            conversation.title = exchange.previous_title
        if not conversation.messages:
            conversation.append_message(welcome_message())

    @staticmethod
    def _stop_timer(exchange: _Exchange) -> None:
        if exchange.timer is None:
            return
        exchange.timer.stop()
        exchange.timer.deleteLater()
        exchange.timer = None

    def _request_notification(self, conversation_id: str, kind: str) -> None:
        if self._preferences is None:
            return
        settings = self._preferences.get()
        if settings.sound_enabled or settings.desktop_notifications_enabled:
            self.notification_requested.emit(conversation_id, kind)
