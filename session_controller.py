"""State-machine based orchestration of the guided heart check."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional

from cancellation import REASON_SESSION_CLOSED, CancelToken
from errors import ANALYSIS_FAILED, ERROR_MESSAGES, CaptureStopError, CaptureUnavailable, HeartCheckError
from instructions import MAX_RECORDING_S, STEP_INSTRUCTIONS
from interfaces import AnalysisService, AudioCapture, Scheduler, TimerHandle
from models import AnalysisOutcome, AudioReference, Instruction, Session, SessionState, Step
from normalizer import normalize
from scheduler import ThreadingScheduler, run_in_thread

logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]
StepCallback = Callable[[Optional[Step], Step, Instruction], None]
TickCallback = Callable[[int], None]
ResultCallback = Callable[[AnalysisOutcome], None]
ErrorCallback = Callable[[str, str], None]
BackgroundRunner = Callable[[Callable[[], None]], None]

TICK_INTERVAL_S = 1.0


class SessionController:
    """Runs one guided session at a time through the fixed step sequence.

    Every step auto-advances after its instruction's duration. Timer callbacks
    carry the step sequence number they were scheduled under and are ignored
    once the session has moved on, so each step transitions exactly once.
    """

    def __init__(
        self,
        recorder: AudioCapture,
        analysis_client: AnalysisService,
        scheduler: Optional[Scheduler] = None,
        instructions: Optional[Dict[Step, Instruction]] = None,
        run_in_background: Optional[BackgroundRunner] = None,
        max_recording_s: int = MAX_RECORDING_S,
        metadata: Optional[Dict[str, Any]] = None,
        on_state_change: Optional[StateCallback] = None,
        on_step_change: Optional[StepCallback] = None,
        on_tick: Optional[TickCallback] = None,
        on_result: Optional[ResultCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._recorder = recorder
        self._client = analysis_client
        self._scheduler = scheduler or ThreadingScheduler()
        self._instructions = instructions or STEP_INSTRUCTIONS
        self._run_in_background = run_in_background or run_in_thread
        self._max_recording_s = max_recording_s
        self._metadata = dict(metadata or {})
        self._on_state_change = on_state_change
        self._on_step_change = on_step_change
        self._on_tick = on_tick
        self._on_result = on_result
        self._on_error = on_error

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._session: Optional[Session] = None
        self._session_counter = 0
        self._token: Optional[CancelToken] = None
        self._step_seq = 0
        self._capturing = False
        self._dwell_elapsed = False
        self._step_timer: Optional[TimerHandle] = None
        self._tick_timer: Optional[TimerHandle] = None
        self._ceiling_timer: Optional[TimerHandle] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def step(self) -> Optional[Step]:
        return self._session.step if self._session else None

    @property
    def outcome(self) -> Optional[AnalysisOutcome]:
        return self._session.outcome if self._session else None

    def open_session(self) -> Session:
        with self._lock:
            if self._is_active() and self._session is not None:
                return self._session
            self._session_counter += 1
            self._session = Session(session_id=self._session_counter)
            self._token = CancelToken()
            self._capturing = False
            self._dwell_elapsed = False
            logger.info("Session %d opened", self._session.session_id)
            self._transition(SessionState.ACTIVE)
            self._enter_step(Step.WELCOME, previous=None)
            return self._session

    def close_session(self, reason: str = "closed") -> None:
        with self._lock:
            if not self._is_active() or self._session is None:
                return
            self._step_seq += 1
            self._cancel_timers()
            if self._token is not None:
                self._token.cancel(REASON_SESSION_CLOSED)
            if self._capturing:
                self._capturing = False
                self._release_recorder()
            logger.info("Session %d closed at %s: %s", self._session.session_id, self._session.step.value, reason)
            self._transition(SessionState.CLOSED)

    def retry_capture(self) -> bool:
        """Try to start the recording again after a capture failure."""
        with self._lock:
            if self._state != SessionState.CAPTURE_ERROR:
                return False
            if not self._begin_capture():
                return False
            self._transition(SessionState.ACTIVE)
            self._schedule_step_timer()
            return True

    # ------------------------------------------------------------------
    # Step sequencing
    # ------------------------------------------------------------------

    def _enter_step(self, step: Step, previous: Optional[Step]) -> None:
        session = self._session
        if session is None:
            return
        self._step_seq += 1
        seq = self._step_seq
        session.step = step
        instruction = self._instructions[step]
        logger.info(
            "Session %d: %s -> %s",
            session.session_id,
            previous.value if previous else "-",
            step.value,
        )
        if self._on_step_change:
            self._on_step_change(previous, step, instruction)
            if not self._is_current(seq):
                return

        if step == Step.RECORDING and not self._begin_capture():
            return
        if step == Step.ANALYZING:
            self._dwell_elapsed = False
            self._begin_analysis()
        if self._is_current(seq):
            self._schedule_step_timer()

    def _schedule_step_timer(self) -> None:
        if self._session is None:
            return
        seq = self._step_seq
        duration = self._instructions[self._session.step].duration_s
        self._step_timer = self._scheduler.call_later(duration, lambda: self._on_step_timer(seq))

    def _on_step_timer(self, seq: int) -> None:
        with self._lock:
            if not self._is_current(seq):
                return
            self._step_timer = None
            session = self._session
            if session is not None and session.step == Step.ANALYZING:
                self._dwell_elapsed = True
                if session.outcome is None:
                    logger.debug("Session %d: waiting for analysis outcome", session.session_id)
                    return
            self._advance()

    def _advance(self) -> None:
        if self._session is None:
            return
        current = self._session.step
        self._cancel_timers()
        following = current.next()
        if following is None:
            self._finish()
            return
        self._enter_step(following, previous=current)

    def _finish(self) -> None:
        self._step_seq += 1
        self._cancel_timers()
        if self._session is not None:
            logger.info("Session %d completed", self._session.session_id)
        self._transition(SessionState.COMPLETED)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def _begin_capture(self) -> bool:
        session = self._session
        if session is None:
            return False
        try:
            if not self._recorder.request_permission():
                raise CaptureUnavailable("Microphone permission was not granted")
            self._recorder.start()
        except CaptureUnavailable as exc:
            self._pause_on_capture_error(exc)
            return False
        except Exception as exc:
            self._pause_on_capture_error(CaptureUnavailable(str(exc)))
            return False

        self._capturing = True
        session.elapsed_recording_s = 0
        seq = self._step_seq
        self._tick_timer = self._scheduler.call_later(TICK_INTERVAL_S, lambda: self._on_recording_tick(seq))
        self._ceiling_timer = self._scheduler.call_later(
            float(self._max_recording_s), lambda: self._on_recording_ceiling(seq)
        )
        return True

    def _pause_on_capture_error(self, exc: HeartCheckError) -> None:
        logger.warning("Capture unavailable, session paused: %s", exc.message)
        self._transition(SessionState.CAPTURE_ERROR)
        self._emit_error(exc.code, exc.message)

    def _on_recording_tick(self, seq: int) -> None:
        with self._lock:
            session = self._session
            if session is None or not self._is_current(seq) or not self._capturing:
                return
            elapsed = min(session.elapsed_recording_s + 1, self._max_recording_s)
            session.elapsed_recording_s = elapsed
            if self._on_tick:
                self._on_tick(elapsed)
            if elapsed >= self._max_recording_s:
                logger.info("Recording reached %ds limit", self._max_recording_s)
                self._advance()
                return
            self._tick_timer = self._scheduler.call_later(TICK_INTERVAL_S, lambda: self._on_recording_tick(seq))

    def _on_recording_ceiling(self, seq: int) -> None:
        with self._lock:
            session = self._session
            if session is None or not self._is_current(seq) or not self._capturing:
                return
            logger.info("Recording ceiling of %ds reached, forcing stop", self._max_recording_s)
            if session.elapsed_recording_s < self._max_recording_s:
                session.elapsed_recording_s = self._max_recording_s
                if self._on_tick:
                    self._on_tick(self._max_recording_s)
            self._advance()

    def _stop_capture(self) -> AudioReference:
        if not self._capturing:
            raise CaptureStopError("No active recording")
        self._capturing = False
        try:
            return self._recorder.stop()
        except CaptureStopError:
            raise
        except Exception as exc:
            raise CaptureStopError(f"Recording could not be stopped: {exc}") from exc

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def _begin_analysis(self) -> None:
        session, token = self._session, self._token
        if session is None or token is None:
            return
        session_id = session.session_id
        try:
            audio = self._stop_capture()
        except HeartCheckError as exc:
            self._record_outcome(session_id, AnalysisOutcome(error_code=exc.code, error_message=exc.message))
            return
        session.audio = audio
        self._run_in_background(lambda: self._run_analysis(session_id, audio, token))

    def _run_analysis(self, session_id: int, audio: AudioReference, token: CancelToken) -> None:
        try:
            raw = self._client.submit(audio, metadata=dict(self._metadata), cancel_token=token)
            outcome = AnalysisOutcome(result=normalize(raw, audio))
        except HeartCheckError as exc:
            outcome = AnalysisOutcome(error_code=exc.code, error_message=exc.message)
        except Exception as exc:
            logger.exception("Analysis worker failed")
            outcome = AnalysisOutcome(
                error_code=ANALYSIS_FAILED,
                error_message=str(exc) or ERROR_MESSAGES[ANALYSIS_FAILED],
            )
        finally:
            self._discard_audio(audio)
        self._record_outcome(session_id, outcome, token)

    def _record_outcome(
        self,
        session_id: int,
        outcome: AnalysisOutcome,
        token: Optional[CancelToken] = None,
    ) -> None:
        with self._lock:
            session = self._session
            if (
                (token is not None and token.cancelled)
                or session is None
                or session.session_id != session_id
                or self._state != SessionState.ACTIVE
                or session.step != Step.ANALYZING
                or session.outcome is not None
            ):
                logger.debug("Discarding analysis outcome for session %d", session_id)
                return

            session.outcome = outcome
            if outcome.result is not None:
                logger.info(
                    "Session %d analysis: %s (%.0f%%)",
                    session_id,
                    outcome.result.classification.prediction,
                    outcome.result.classification.confidence * 100,
                )
            else:
                logger.warning("Session %d analysis failed: %s", session_id, outcome.error_message)
                self._emit_error(outcome.error_code, outcome.error_message)
            if self._on_result:
                self._on_result(outcome)
            if self._dwell_elapsed:
                self._advance()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_active(self) -> bool:
        return self._state in (SessionState.ACTIVE, SessionState.CAPTURE_ERROR)

    def _is_current(self, seq: int) -> bool:
        return seq == self._step_seq and self._state == SessionState.ACTIVE and self._session is not None

    def _cancel_timers(self) -> None:
        for handle in (self._step_timer, self._tick_timer, self._ceiling_timer):
            if handle is not None:
                handle.cancel()
        self._step_timer = None
        self._tick_timer = None
        self._ceiling_timer = None

    def _release_recorder(self) -> None:
        try:
            audio = self._recorder.stop()
        except Exception as exc:
            logger.warning("Releasing recorder failed: %s", exc)
            return
        self._discard_audio(audio)

    def _discard_audio(self, audio: AudioReference) -> None:
        try:
            self._recorder.discard(audio)
        except Exception as exc:
            logger.warning("Discarding recording failed: %s", exc)

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error:
            self._on_error(code, message)

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
