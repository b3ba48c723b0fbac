"""Protocol interfaces used by SessionController."""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Protocol

from cancellation import CancelToken
from models import AudioReference, RawAnalysisResponse


class AudioCapture(Protocol):
    def request_permission(self) -> bool: ...

    def start(self) -> None: ...

    def elapsed_seconds(self) -> float: ...

    def stop(self) -> AudioReference: ...

    def discard(self, audio: AudioReference) -> None: ...


class AnalysisService(Protocol):
    def check_health(
        self,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> bool: ...

    def submit(
        self,
        audio: AudioReference,
        metadata: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> RawAnalysisResponse: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle: ...
