"""Tests for the completion API client."""

import io
import json
from dataclasses import replace
from urllib.error import HTTPError, URLError

import pytest

from eva_chat import llm_client
from eva_chat.config import LLMConfig
from eva_chat.errors import CollaboratorError
from eva_chat.llm_client import OpenAIChatClient, build_prompt_messages, extract_reply
from eva_chat.models import ChatMessage


class FakeResponse:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture
def config():
    return LLMConfig(
        base_url="https://api.example.test/v1",
        model="gpt-3.5-turbo",
        temperature=0.7,
        max_tokens=500,
        request_timeout_sec=12,
        api_key="sk-test",
    )


@pytest.fixture
def history():
    return [
        ChatMessage(role="assistant", content="Welcome"),
        ChatMessage(role="user", content="Hello"),
        ChatMessage(role="assistant", content="Hal", pending=True),
    ]


def test_prompt_starts_with_system_and_skips_pending(history):
    payload = build_prompt_messages(history, "Be supportive.")
    assert payload == [
        {"role": "system", "content": "Be supportive."},
        {"role": "assistant", "content": "Welcome"},
        {"role": "user", "content": "Hello"},
    ]
    assert build_prompt_messages(history, None)[0]["role"] == "assistant"


def test_extract_reply_reads_first_choice():
    payload = {"choices": [{"message": {"role": "assistant", "content": "Hi there"}}]}
    assert extract_reply(payload) == "Hi there"


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {},
        {"choices": []},
        {"choices": [{"message": {}}]},
        {"choices": [{"message": {"content": "   "}}]},
    ],
)
def test_extract_reply_rejects_unusable_payloads(payload):
    with pytest.raises(CollaboratorError):
        extract_reply(payload)


def test_generate_reply_posts_expected_body(monkeypatch, config, history):
    captured = {}

    def fake_urlopen(request, timeout):
        captured["url"] = request.full_url
        captured["timeout"] = timeout
        captured["auth"] = request.get_header("Authorization")
        captured["body"] = json.loads(request.data.decode("utf-8"))
        reply = {"choices": [{"message": {"content": "Hi there"}}]}
        return FakeResponse(json.dumps(reply).encode("utf-8"))

    monkeypatch.setattr(llm_client, "urlopen", fake_urlopen)
    client = OpenAIChatClient(config, allow_telemetry=True)

    assert client.generate_reply(history, "Be supportive.") == "Hi there"
    assert captured["url"] == "https://api.example.test/v1/chat/completions"
    assert captured["timeout"] == 12
    assert captured["auth"] == "Bearer sk-test"
    body = captured["body"]
    assert body["model"] == "gpt-3.5-turbo"
    assert body["temperature"] == 0.7
    assert body["max_tokens"] == 500
    assert body["store"] is True
    assert len(body["messages"]) == 3


def test_telemetry_off_omits_store_flag(monkeypatch, config, history):
    bodies = []

    def fake_urlopen(request, timeout):
        bodies.append(json.loads(request.data.decode("utf-8")))
        return FakeResponse(b'{"choices": [{"message": {"content": "ok"}}]}')

    monkeypatch.setattr(llm_client, "urlopen", fake_urlopen)
    OpenAIChatClient(config, allow_telemetry=False).generate_reply(history, None)
    assert "store" not in bodies[0]


def test_missing_api_key_fails_without_network(monkeypatch, config, history):
    def fail(*args, **kwargs):
        raise AssertionError("network must not be used")

    monkeypatch.setattr(llm_client, "urlopen", fail)
    client = OpenAIChatClient(replace(config, api_key=None))
    with pytest.raises(CollaboratorError):
        client.generate_reply(history, None)


def test_http_error_carries_api_message(monkeypatch, config, history):
    def fake_urlopen(request, timeout):
        body = io.BytesIO(b'{"error": {"message": "Invalid API key"}}')
        raise HTTPError(request.full_url, 401, "Unauthorized", {}, body)

    monkeypatch.setattr(llm_client, "urlopen", fake_urlopen)
    with pytest.raises(CollaboratorError, match="401 Invalid API key"):
        OpenAIChatClient(config).generate_reply(history, None)


@pytest.mark.parametrize(
    "error",
    [URLError("Name or service not known"), TimeoutError("timed out")],
)
def test_transport_errors_become_collaborator_errors(monkeypatch, config, history, error):
    def fake_urlopen(request, timeout):
        raise error

    monkeypatch.setattr(llm_client, "urlopen", fake_urlopen)
    with pytest.raises(CollaboratorError):
        OpenAIChatClient(config).generate_reply(history, None)


@pytest.mark.parametrize("body", [b"", b"<html>oops</html>"])
def test_unreadable_bodies_become_collaborator_errors(monkeypatch, config, history, body):
    monkeypatch.setattr(llm_client, "urlopen", lambda request, timeout: FakeResponse(body))
    with pytest.raises(CollaboratorError):
        OpenAIChatClient(config).generate_reply(history, None)
