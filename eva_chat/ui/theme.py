from __future__ import annotations

from ..models import ColorTheme

# テーマごとのアクセントカラー（淡色 / 標準 / 濃色）
ACCENT_COLORS: dict[ColorTheme, tuple[str, str, str]] = {
    ColorTheme.BLUE: ("#dbeafe", "#2563eb", "#1d4ed8"),
    ColorTheme.PURPLE: ("#ede9fe", "#7c3aed", "#6d28d9"),
    ColorTheme.GREEN: ("#dcfce7", "#16a34a", "#15803d"),
}


def accent_color(theme: ColorTheme) -> str:
    return ACCENT_COLORS[theme][1]


def build_stylesheet(theme: ColorTheme) -> str:
    light, base, dark = ACCENT_COLORS[theme]
    return f"""
QPushButton {{
    background-color: {base};
    color: white;
    border: none;
    border-radius: 6px;
    padding: 6px 12px;
}}
QPushButton:hover {{
    background-color: {dark};
}}
QPushButton:disabled {{
    background-color: #9ca3af;
}}
QListWidget::item:selected {{
    background-color: {light};
    color: {dark};
}}
QLineEdit, QPlainTextEdit {{
    border: 1px solid #d1d5db;
    border-radius: 6px;
    padding: 4px;
}}
QLineEdit:focus, QPlainTextEdit:focus {{
    border: 1px solid {base};
}}
QLabel#ErrorLabel {{
    color: #b91c1c;
}}
"""
