from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .settings import (
    get_bool_setting,
    get_float_setting,
    get_int_setting,
    get_optional_str_setting,
    get_str_setting,
    load_settings,
    merge_settings,
)

HOME_ENV_VAR = "EVA_CHAT_HOME"
API_KEY_ENV_VAR = "OPENAI_API_KEY"


def default_root() -> Path:
    override = os.getenv(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser().resolve()
    return Path.home() / ".eva-chat"


@dataclass(frozen=True)
class AppPaths:
    root: Path
    data_dir: Path

    @classmethod
    def from_root(cls, root: Path) -> "AppPaths":
        return cls(root=root, data_dir=root / "data")


@dataclass(frozen=True)
class LLMConfig:
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    request_timeout_sec: float
    api_key: str | None


@dataclass
class AppConfig:
    """Paths plus the merged ``eva_settings.json`` contents."""

    paths: AppPaths = field(default_factory=lambda: AppPaths.from_root(default_root()))
    settings: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.settings:
            self.settings = load_settings(self.paths.root)

    @classmethod
    def for_root(cls, root: Path, overrides: Mapping[str, Any] | None = None) -> "AppConfig":
        paths = AppPaths.from_root(root)
        settings = merge_settings(overrides) if overrides else load_settings(root)
        return cls(paths=paths, settings=settings)

    @property
    def log_level(self) -> str:
        return get_str_setting(self.settings, "app.log_level", "INFO").upper()

    @property
    def assistant_name(self) -> str:
        return get_str_setting(self.settings, "app.assistant_name", "Eva")

    @property
    def show_intro(self) -> bool:
        return get_bool_setting(self.settings, "app.show_intro", True)

    @property
    def reveal_interval_ms(self) -> int:
        value = get_int_setting(self.settings, "reveal.interval_ms", 30)
        return max(0, value if value is not None else 30)

    @property
    def stage_deleted_conversations(self) -> bool:
        return get_bool_setting(self.settings, "history.stage_deleted_conversations", True)

    @property
    def sound_volume(self) -> float:
        return min(1.0, max(0.0, get_float_setting(self.settings, "sound.volume", 0.5)))

    def llm(self) -> LLMConfig:
        # API キーは環境変数を優先し、なければ設定ファイルの値を使う
        api_key = os.getenv(API_KEY_ENV_VAR) or get_optional_str_setting(self.settings, "llm.api_key")
        return LLMConfig(
            base_url=get_str_setting(self.settings, "llm.base_url", "https://api.openai.com/v1").rstrip("/"),
            model=get_str_setting(self.settings, "llm.model", "gpt-3.5-turbo"),
            temperature=get_float_setting(self.settings, "llm.temperature", 0.7),
            max_tokens=get_int_setting(self.settings, "llm.max_tokens", 500) or 500,
            request_timeout_sec=max(1.0, get_float_setting(self.settings, "llm.request_timeout_sec", 60.0)),
            api_key=api_key,
        )
