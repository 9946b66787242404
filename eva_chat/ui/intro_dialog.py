from __future__ import annotations

import html

from PySide6.QtWidgets import QDialog, QDialogButtonBox, QLabel, QVBoxLayout, QWidget

from ..prompts import INTRO_CAN_DO, INTRO_LIMITATIONS


class IntroDialog(QDialog):
    """First-run notice about what the assistant can and cannot do."""

    def __init__(self, assistant_name: str, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self.setWindowTitle(f"Important Information About {assistant_name}")
        self.setMinimumWidth(480)

        body = QLabel(self._build_html(assistant_name), self)
        body.setWordWrap(True)

        buttons = QDialogButtonBox(self)
        buttons.addButton("I understand", QDialogButtonBox.AcceptRole)
        buttons.accepted.connect(self.accept)

        layout = QVBoxLayout(self)
        layout.addWidget(body)
        layout.addWidget(buttons)

    @staticmethod
    def _build_html(assistant_name: str) -> str:
        name = html.escape(assistant_name)
        can_do = "".join(f"<li>{html.escape(item)}</li>" for item in INTRO_CAN_DO)
        limits = "".join(f"<li>{html.escape(item)}</li>" for item in INTRO_LIMITATIONS)
        return (
            f'<h3 style="color:#1d4ed8;">What {name} Can Do:</h3><ul>{can_do}</ul>'
            f'<h3 style="color:#b91c1c;">Important Limitations:</h3><ul>{limits}</ul>'
        )
