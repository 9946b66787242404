from __future__ import annotations

import json
import logging
from copy import deepcopy
from pathlib import Path
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "eva_settings.json"

_MISSING = object()

DEFAULT_SETTINGS: dict[str, Any] = {
    "app": {
        "log_level": "INFO",
        "assistant_name": "Eva",
        "show_intro": True,
    },
    "llm": {
        "base_url": "https://api.openai.com/v1",
        "api_key": None,
        "model": "gpt-3.5-turbo",
        "temperature": 0.7,
        "max_tokens": 500,
        "request_timeout_sec": 60,
    },
    "reveal": {
        "interval_ms": 30,
    },
    "history": {
        "stage_deleted_conversations": True,
    },
    "sound": {
        "volume": 0.5,
    },
}


def settings_path(root: Path) -> Path:
    return root / SETTINGS_FILENAME


def load_settings(root: Path) -> dict[str, Any]:
    """Read ``eva_settings.json`` under ``root`` merged over the defaults.

    A missing, unreadable or non-object file yields the defaults; only the
    last two are worth a warning.
    """

    path = settings_path(root)
    if not path.is_file():
        return merge_settings({})
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable %s: %s", path, exc)
        return merge_settings({})
    if not isinstance(payload, Mapping):
        logger.warning("Ignoring %s: top level must be an object", path)
        return merge_settings({})
    return merge_settings(payload)


def merge_settings(override: Mapping[str, Any]) -> dict[str, Any]:
    return _deep_merge(DEFAULT_SETTINGS, override)


def get_setting(settings: Mapping[str, Any], dotted_key: str, default: Any = None) -> Any:
    node: Any = settings
    for name in dotted_key.split("."):
        if not isinstance(node, Mapping):
            return default
        node = node.get(name, _MISSING)
        if node is _MISSING:
            return default
    return node


def get_bool_setting(settings: Mapping[str, Any], dotted_key: str, default: bool) -> bool:
    value = get_setting(settings, dotted_key)
    return value if isinstance(value, bool) else default


def get_int_setting(settings: Mapping[str, Any], dotted_key: str, default: int | None) -> int | None:
    return _coerced(settings, dotted_key, default, int)


def get_float_setting(settings: Mapping[str, Any], dotted_key: str, default: float) -> float:
    return _coerced(settings, dotted_key, default, float)


def get_str_setting(settings: Mapping[str, Any], dotted_key: str, default: str) -> str:
    return get_optional_str_setting(settings, dotted_key) or default


def get_optional_str_setting(settings: Mapping[str, Any], dotted_key: str) -> str | None:
    value = get_setting(settings, dotted_key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _coerced(settings: Mapping[str, Any], dotted_key: str, default: Any, convert: Callable[[Any], Any]) -> Any:
    value = get_setting(settings, dotted_key)
    # bool は int のサブクラスなので数値としては受け付けない
    if value is None or isinstance(value, bool):
        return default
    try:
        return convert(value)
    except (TypeError, ValueError):
        return default


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    result = deepcopy(dict(base))
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = _deep_merge(current, value)
        else:
            result[key] = deepcopy(value)
    return result
