from __future__ import annotations

import itertools
import threading
import time
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

DEFAULT_TITLE = "New conversation"
TITLE_LENGTH = 32
PREVIEW_LENGTH = 30


def utc_now_iso() -> str:
    # タイムゾーン付き ISO 文字列（ミリ秒精度）で現在時刻を取得する
    return datetime.now(tz=timezone.utc).isoformat(timespec="milliseconds")


_id_counter = itertools.count()
_id_lock = threading.Lock()


def new_id() -> str:
    """Return an id that sorts by creation time and never repeats in-process."""

    with _id_lock:
        sequence = next(_id_counter)
    return f"{int(time.time() * 1000):013d}-{sequence:06d}-{uuid.uuid4().hex[:6]}"


ChatRole = Literal["user", "assistant"]


@dataclass
class ChatMessage:
    role: ChatRole
    content: str
    message_id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now_iso)
    pending: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.message_id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at,
            "pending": self.pending,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "ChatMessage":
        role = payload["role"]
        if role not in ("user", "assistant"):
            raise ValueError(f"Unsupported message role: {role!r}")
        content = payload["content"]
        if not isinstance(content, str):
            raise ValueError("Message content must be a string.")
        return cls(
            role=role,
            content=content,
            message_id=str(payload.get("id") or new_id()),
            created_at=payload.get("created_at", utc_now_iso()),
            pending=bool(payload.get("pending", False)),
        )

    def as_prompt(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class Conversation:
    conversation_id: str = field(default_factory=new_id)
    title: str = DEFAULT_TITLE
    messages: list[ChatMessage] = field(default_factory=list)
    last_activity: str = field(default_factory=utc_now_iso)
    title_locked: bool = False

    def append_message(self, message: ChatMessage) -> None:
        self.messages.append(message)
        self.last_activity = utc_now_iso()
        if self._should_update_title(message):
            # 最初のユーザ発話から会話タイトルを自動生成する
            self.title = self._derive_title_from_message(message)

    def find_message(self, message_id: str) -> ChatMessage | None:
        for message in self.messages:
            if message.message_id == message_id:
                return message
        return None

    def remove_message(self, message_id: str) -> ChatMessage | None:
        for index, message in enumerate(self.messages):
            if message.message_id == message_id:
                return self.messages.pop(index)
        return None

    def rename(self, title: str) -> bool:
        clean = " ".join(title.strip().split())
        if not clean:
            return False
        self.title = clean
        self.title_locked = True
        return True

    @property
    def pending_message(self) -> ChatMessage | None:
        for message in self.messages:
            if message.pending:
                return message
        return None

    @property
    def preview(self) -> str:
        if not self.messages:
            return ""
        content = " ".join(self.messages[-1].content.split())
        if len(content) > PREVIEW_LENGTH:
            return content[:PREVIEW_LENGTH] + "..."
        return content

    def user_messages(self) -> list[ChatMessage]:
        return [message for message in self.messages if message.role == "user"]

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "title": self.title,
            "title_locked": self.title_locked,
            "last_activity": self.last_activity,
            "messages": [message.to_dict() for message in self.messages],
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "Conversation":
        raw_messages = payload.get("messages", [])
        if not isinstance(raw_messages, list):
            raise ValueError("Conversation messages must be a list.")
        messages = [ChatMessage.from_dict(m) for m in raw_messages]
        title = payload.get("title")
        if not isinstance(title, str) or not title.strip():
            title = DEFAULT_TITLE
        return cls(
            conversation_id=str(payload["conversation_id"]),
            title=title,
            messages=messages,
            last_activity=payload.get("last_activity", utc_now_iso()),
            title_locked=bool(payload.get("title_locked", False)),
        )

    def _should_update_title(self, message: ChatMessage) -> bool:
        if self.title_locked or message.role != "user" or not message.content.strip():
            return False
        # 2 件目以降のユーザ発話ではタイトルを変えない
        return len(self.user_messages()) == 1

    @staticmethod
    def _derive_title_from_message(message: ChatMessage) -> str:
        clean = " ".join(message.content.strip().split())
        return clean[:TITLE_LENGTH] if clean else DEFAULT_TITLE


TrashKind = Literal["conversation", "message"]


@dataclass
class TrashRecord:
    kind: TrashKind
    content: str
    original_conversation_id: str
    record_id: str = field(default_factory=new_id)
    deleted_at: str = field(default_factory=utc_now_iso)
    title: str = DEFAULT_TITLE
    snapshot: dict | None = None
    parent_record_id: str | None = None

    @property
    def is_conversation(self) -> bool:
        return self.kind == "conversation"

    def to_dict(self) -> dict:
        return {
            "id": self.record_id,
            "kind": self.kind,
            "content": self.content,
            "original_conversation_id": self.original_conversation_id,
            "deleted_at": self.deleted_at,
            "title": self.title,
            "snapshot": self.snapshot,
            "parent_record_id": self.parent_record_id,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "TrashRecord":
        kind = payload.get("kind", "message")
        if kind not in ("conversation", "message"):
            raise ValueError(f"Unsupported trash record kind: {kind!r}")
        snapshot = payload.get("snapshot")
        if kind == "conversation" and not isinstance(snapshot, dict):
            raise ValueError("Conversation trash record is missing its snapshot.")
        return cls(
            kind=kind,
            content=str(payload.get("content", "")),
            original_conversation_id=str(payload["original_conversation_id"]),
            record_id=str(payload["id"]),
            deleted_at=payload.get("deleted_at", utc_now_iso()),
            title=payload.get("title") or DEFAULT_TITLE,
            snapshot=snapshot if isinstance(snapshot, dict) else None,
            parent_record_id=payload.get("parent_record_id"),
        )


class ColorTheme(str, Enum):
    BLUE = "blue"
    PURPLE = "purple"
    GREEN = "green"


@dataclass(frozen=True)
class UserSettings:
    sound_enabled: bool = False
    desktop_notifications_enabled: bool = False
    persist_history: bool = True
    allow_telemetry: bool = True
    color_theme: ColorTheme = ColorTheme.BLUE

    def to_dict(self) -> dict[str, Any]:
        return {
            "sound_enabled": self.sound_enabled,
            "desktop_notifications_enabled": self.desktop_notifications_enabled,
            "persist_history": self.persist_history,
            "allow_telemetry": self.allow_telemetry,
            "color_theme": self.color_theme.value,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "UserSettings":
        defaults = cls()
        values: dict[str, Any] = {}
        for item in fields(cls):
            raw = payload.get(item.name, getattr(defaults, item.name))
            if item.name == "color_theme":
                try:
                    values[item.name] = ColorTheme(raw)
                except ValueError:
                    values[item.name] = defaults.color_theme
            elif isinstance(raw, bool):
                values[item.name] = raw
            else:
                values[item.name] = getattr(defaults, item.name)
        return cls(**values)

    def merged(self, partial: dict[str, Any]) -> "UserSettings":
        """Return a copy with ``partial`` applied, validating names and types."""

        known = {item.name for item in fields(self)}
        unknown = set(partial) - known
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        values = self.to_dict()
        for key, value in partial.items():
            if key == "color_theme":
                try:
                    values[key] = ColorTheme(value).value
                except ValueError as exc:
                    raise ValueError(f"Unknown color theme: {value!r}") from exc
            elif not isinstance(value, bool):
                raise TypeError(f"Setting {key} expects a bool, got {type(value).__name__}")
            else:
                values[key] = value
        return UserSettings.from_dict(values)
