"""Overlay window showing the current step instruction."""

from __future__ import annotations

from typing import List

try:
    from PySide6.QtCore import Qt, QTimer
    from PySide6.QtWidgets import QApplication, QLabel, QVBoxLayout, QWidget
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    QApplication = None  # type: ignore
    QLabel = object  # type: ignore
    QWidget = object  # type: ignore
    QVBoxLayout = object  # type: ignore

_TITLE_STYLE = "color: white; font-size: 20px; font-weight: 600; padding: 16px 16px 4px 16px;"
_BODY_STYLE = "color: #DDDDDD; font-size: 15px; padding: 4px 16px 16px 16px;"
_ERROR_STYLE = "color: #FF6B6B; font-size: 18px; padding: 16px;"


class OverlayWindow(QWidget):
    def __init__(self) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowFlags(Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool)
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setFixedWidth(600)
        self.setStyleSheet("background: rgba(0,0,0,190); border-radius: 12px;")

        self._title = QLabel("")
        self._title.setWordWrap(True)
        self._body = QLabel("")
        self._body.setWordWrap(True)

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(0)
        layout.addWidget(self._title)
        layout.addWidget(self._body)
        self.setLayout(layout)

        self._hide_timer: QTimer | None = None
        self._reset_style()

    def _center_top(self) -> None:
        """Position the window at the top center of the primary screen."""
        if QApplication is None:
            return
        screen = QApplication.primaryScreen()
        if screen is None:
            return
        geom = screen.availableGeometry()
        self.adjustSize()
        x = geom.x() + (geom.width() - self.width()) // 2
        y = geom.y() + 40
        self.move(x, y)

    def show_instruction(self, title: str, subtitle: str) -> None:
        self._cancel_hide_timer()
        self._reset_style()
        self._title.setText(title)
        self._body.setText(subtitle)
        self._center_top()
        self.show()

    def set_detail(self, text: str) -> None:
        self._body.setText(text)

    def show_lines(self, title: str, lines: List[str]) -> None:
        self.show_instruction(title, "\n".join(lines))

    def hide_with_delay(self, delay_ms: int = 400) -> None:
        """Hide the overlay window after a short delay."""
        self._cancel_hide_timer()
        if QTimer is not None:
            self._hide_timer = QTimer()
            self._hide_timer.setSingleShot(True)
            self._hide_timer.timeout.connect(self.hide)
            self._hide_timer.start(delay_ms)

    def show_error(self, text: str, hide_after_ms: int = 0) -> None:
        """Show an error message, optionally auto-hiding it."""
        self._cancel_hide_timer()
        self._title.setStyleSheet(_ERROR_STYLE)
        self._title.setText(text)
        self._body.setText("")
        self._center_top()
        self.show()
        if hide_after_ms:
            self.hide_with_delay(hide_after_ms)

    def _cancel_hide_timer(self) -> None:
        if self._hide_timer is not None:
            self._hide_timer.stop()
            self._hide_timer = None

    def _reset_style(self) -> None:
        self._title.setStyleSheet(_TITLE_STYLE)
        self._body.setStyleSheet(_BODY_STYLE)
