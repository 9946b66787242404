from __future__ import annotations

from typing import Iterable

from PySide6.QtCore import QObject, Signal, Slot

from .llm_client import CompletionClient
from .models import ChatMessage


class LLMWorker(QObject):
    """Runs one completion call off the GUI thread.

    Results carry the conversation and exchange ids so the receiver can apply
    them to the conversation they belong to, whatever is active by then.
    """

    finished = Signal(str, str, str)
    failed = Signal(str, str, str)

    def __init__(
        self,
        client: CompletionClient,
        conversation_id: str,
        exchange_id: str,
        messages: Iterable[ChatMessage],
        system_prompt: str | None,
    ) -> None:
        super().__init__()
        self._client = client
        self._conversation_id = conversation_id
        self._exchange_id = exchange_id
        self._messages = list(messages)
        self._system_prompt = system_prompt

    @Slot()
    def run(self) -> None:
        try:
            # GUI スレッドを塞がないよう別スレッドで応答生成を行う
            response = self._client.generate_reply(self._messages, self._system_prompt)
        except Exception as exc:
            self.failed.emit(self._conversation_id, self._exchange_id, str(exc) or type(exc).__name__)
            return
        if not isinstance(response, str) or not response.strip():
            self.failed.emit(self._conversation_id, self._exchange_id, "No response from AI")
            return
        self.finished.emit(self._conversation_id, self._exchange_id, response)
