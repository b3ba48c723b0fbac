"""Application entrypoint."""

from __future__ import annotations

import os
import sys

from analysis_client import HeartSoundAnalysisClient
from config import JsonConfigStore
from errors import CAPTURE_UNAVAILABLE
from log_config import setup_logging
from models import AnalysisOutcome, Instruction, SessionState, Step
from normalizer import summarize, summarize_model_info
from overlay import OverlayWindow
from recorder import SoundDeviceRecorder
from scheduler import run_in_thread
from session_controller import SessionController

try:
    from PySide6.QtCore import QObject, QSize, Signal
    from PySide6.QtGui import QAction, QBrush, QColor, QIcon, QPainter, QPixmap
    from PySide6.QtWidgets import QApplication, QInputDialog, QMenu, QMessageBox, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")


def _create_icon(color: str = "#888888", size: int = 22) -> QIcon:
    """Generate a simple circular tray icon with the given color."""
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


ICON_IDLE = "#888888"
ICON_ACTIVE = "#4C8BF5"
ICON_RECORDING = "#FF4444"
ICON_ERROR = "#FF8800"


class UIBridge(QObject):
    state_signal = Signal(str, str)  # from_state, to_state
    step_signal = Signal(str, str, str)  # step, title, subtitle
    tick_signal = Signal(int)
    result_signal = Signal(object)
    error_signal = Signal(str, str)  # code, message
    model_info_signal = Signal(object)


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store = JsonConfigStore()
        self.overlay = OverlayWindow()
        self.ui = UIBridge()
        self.ui.state_signal.connect(self._on_state_change_ui)
        self.ui.step_signal.connect(self._on_step_ui)
        self.ui.tick_signal.connect(self._on_tick_ui)
        self.ui.result_signal.connect(self._on_result_ui)
        self.ui.error_signal.connect(self._on_error_ui)
        self.ui.model_info_signal.connect(self._on_model_info_ui)

        self.controller = self._build_controller()

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(ICON_IDLE))
        self.tray.setToolTip("Heart Check - Ready")
        self._setup_menu()
        self.tray.show()

    def _build_controller(self) -> SessionController:
        self.client = HeartSoundAnalysisClient(self.config_store.load_client_config())
        return SessionController(
            recorder=SoundDeviceRecorder(),
            analysis_client=self.client,
            on_state_change=self._on_state_change,
            on_step_change=self._on_step_change,
            on_tick=self._on_tick,
            on_result=self._on_result,
            on_error=self._on_error,
        )

    def _setup_menu(self) -> None:
        menu = QMenu()

        start_action = QAction("Start Heart Check", menu)
        start_action.triggered.connect(self._start_session)
        menu.addAction(start_action)

        retry_action = QAction("Retry Recording", menu)
        retry_action.triggered.connect(self._retry_capture)
        menu.addAction(retry_action)

        cancel_action = QAction("Cancel", menu)
        cancel_action.triggered.connect(self._cancel_session)
        menu.addAction(cancel_action)

        info_action = QAction("Analysis Service Info", menu)
        info_action.triggered.connect(self._show_model_info)
        menu.addAction(info_action)

        menu.addSeparator()
        url_action = QAction("Set Backend URL", menu)
        url_action.triggered.connect(self._set_backend_url)
        menu.addAction(url_action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        self.tray.setContextMenu(menu)

    def _set_backend_url(self) -> None:
        if self.controller.state in (SessionState.ACTIVE, SessionState.CAPTURE_ERROR):
            QMessageBox.information(None, "Busy", "Finish or cancel the current heart check first.")
            return
        current = self.config_store.get_backend_url()
        value, ok = QInputDialog.getText(None, "Backend URL", "Analysis service URL", text=current)
        if not ok or not value:
            return
        self.config_store.set_backend_url(value)
        self.controller = self._build_controller()
        QMessageBox.information(None, "Saved", "Backend URL saved and applied.")

    # ------------------------------------------------------------------
    # Menu handlers
    # ------------------------------------------------------------------

    def _start_session(self) -> None:
        self.controller.open_session()

    def _retry_capture(self) -> None:
        self.controller.retry_capture()

    def _cancel_session(self) -> None:
        self.controller.close_session("cancelled by user")

    def _show_model_info(self) -> None:
        client = self.client
        run_in_thread(lambda: self.ui.model_info_signal.emit(client.get_model_info()))

    # ------------------------------------------------------------------
    # Callbacks (called from timer/worker threads → emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: SessionState, to_state: SessionState) -> None:
        self.ui.state_signal.emit(from_state.value, to_state.value)

    def _on_step_change(self, previous: Step | None, step: Step, instruction: Instruction) -> None:
        self.ui.step_signal.emit(step.value, instruction.title, instruction.subtitle)

    def _on_tick(self, elapsed_s: int) -> None:
        self.ui.tick_signal.emit(elapsed_s)

    def _on_result(self, outcome: AnalysisOutcome) -> None:
        self.ui.result_signal.emit(outcome)

    def _on_error(self, code: str, message: str) -> None:
        self.ui.error_signal.emit(code, message)

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _on_step_ui(self, step: str, title: str, subtitle: str) -> None:
        if step == Step.RESULTS.value:
            outcome = self.controller.outcome
            if outcome is not None and outcome.result is not None:
                self.overlay.show_lines(title, summarize(outcome.result))
                return
            if outcome is not None:
                self.overlay.show_lines("Analysis could not be completed", [outcome.error_message])
                return
        self.overlay.show_instruction(title, subtitle)
        if step == Step.RECORDING.value:
            self.tray.setIcon(_create_icon(ICON_RECORDING))
        elif step == Step.ANALYZING.value:
            self.tray.setIcon(_create_icon(ICON_ACTIVE))

    def _on_tick_ui(self, elapsed_s: int) -> None:
        self.overlay.set_detail(f"Recording... {elapsed_s}s")

    def _on_result_ui(self, outcome: AnalysisOutcome) -> None:
        if outcome.ok and outcome.result is not None:
            self.tray.setToolTip(f"Heart Check - {outcome.result.classification.condition}")

    def _on_error_ui(self, code: str, message: str) -> None:
        self.tray.setIcon(_create_icon(ICON_ERROR))
        if code == CAPTURE_UNAVAILABLE:
            self.overlay.show_error(f"{message}\nUse 'Retry Recording' or 'Cancel' from the tray menu.")
        else:
            self.overlay.show_error(message)

    def _on_model_info_ui(self, info: object) -> None:
        lines = summarize_model_info(info if isinstance(info, dict) else None)
        if self.controller.state in (SessionState.ACTIVE, SessionState.CAPTURE_ERROR):
            # keep the step instructions on screen
            self.tray.showMessage("Analysis service", "\n".join(lines))
            return
        self.overlay.show_lines("Analysis service", lines)
        self.overlay.hide_with_delay(5000)

    def _on_state_change_ui(self, from_state: str, to_state: str) -> None:
        if to_state == SessionState.ACTIVE.value:
            self.tray.setIcon(_create_icon(ICON_ACTIVE))
            self.tray.setToolTip("Heart Check - In progress")
        elif to_state in (SessionState.COMPLETED.value, SessionState.CLOSED.value):
            self.tray.setIcon(_create_icon(ICON_IDLE))
            self.tray.setToolTip("Heart Check - Ready")
            self.overlay.hide_with_delay(400)
        elif to_state == SessionState.CAPTURE_ERROR.value:
            self.tray.setIcon(_create_icon(ICON_ERROR))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        return self.app.exec()

    def quit(self) -> None:
        self.controller.close_session("app quit")
        self.app.quit()


def main() -> int:
    setup_logging(os.getenv("HEART_CHECK_LOG_LEVEL", "INFO"), os.getenv("HEART_CHECK_LOG_FILE"))
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
