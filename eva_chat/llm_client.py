from __future__ import annotations

import json
import logging
import socket
from typing import Any, Iterable, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .config import LLMConfig
from .errors import CollaboratorError
from .models import ChatMessage

logger = logging.getLogger(__name__)


class CompletionClient(Protocol):
    def generate_reply(self, messages: Iterable[ChatMessage], system_prompt: str | None) -> str: ...


def build_prompt_messages(
    messages: Iterable[ChatMessage], system_prompt: str | None
) -> list[dict[str, str]]:
    """Role/content pairs sent upstream; the system prompt is never stored."""

    payload: list[dict[str, str]] = []
    if system_prompt:
        payload.append({"role": "system", "content": system_prompt})
    # 表示途中のメッセージは文脈に含めない
    payload.extend(message.as_prompt() for message in messages if not message.pending)
    return payload


class OpenAIChatClient:
    """Blocking client for an OpenAI-compatible ``/chat/completions`` endpoint.

    Runs on a worker thread; every failure surfaces as ``CollaboratorError``.
    """

    def __init__(self, config: LLMConfig, allow_telemetry: bool = False) -> None:
        self._config = config
        self.allow_telemetry = allow_telemetry

    def generate_reply(self, messages: Iterable[ChatMessage], system_prompt: str | None) -> str:
        if not self._config.api_key:
            raise CollaboratorError("No API key configured. Set OPENAI_API_KEY or llm.api_key.")

        body: dict[str, Any] = {
            "model": self._config.model,
            "messages": build_prompt_messages(messages, system_prompt),
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
        }
        if self.allow_telemetry:
            body["store"] = True

        logger.debug("Requesting completion (model=%s, messages=%d)", self._config.model, len(body["messages"]))
        payload = _request_json(
            f"{self._config.base_url}/chat/completions",
            body,
            api_key=self._config.api_key,
            timeout=self._config.request_timeout_sec,
        )
        return extract_reply(payload)


def extract_reply(payload: Any) -> str:
    if not isinstance(payload, dict):
        raise CollaboratorError("Unexpected response from /chat/completions.")
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise CollaboratorError("Response contained no choices.")
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content.strip():
        raise CollaboratorError("No response from AI")
    return content


def _request_json(url: str, body: dict[str, Any], api_key: str, timeout: float) -> Any:
    request = Request(
        url,
        data=json.dumps(body).encode("utf-8"),
        headers={
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {api_key}",
        },
        method="POST",
    )
    try:
        with urlopen(request, timeout=timeout) as response:
            raw = response.read()
    except HTTPError as exc:
        detail = _error_detail(exc)
        raise CollaboratorError(f"Completion API error: {exc.code} {detail}") from exc
    except URLError as exc:
        raise CollaboratorError(f"Completion API connection failed: {exc.reason}") from exc
    except (socket.timeout, TimeoutError) as exc:
        raise CollaboratorError("Completion API request timed out.") from exc

    if not raw:
        raise CollaboratorError("Completion API returned an empty body.")
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CollaboratorError("Completion API returned malformed JSON.") from exc


def _error_detail(exc: HTTPError) -> str:
    try:
        payload = json.loads(exc.read().decode("utf-8"))
    except Exception:  # pragma: no cover - best effort detail
        return str(exc.reason)
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        message = payload["error"].get("message")
        if isinstance(message, str) and message:
            return message
    return str(exc.reason)
