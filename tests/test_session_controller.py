from __future__ import annotations

from dataclasses import replace
from typing import Callable

from cancellation import CancelToken
from errors import (
    ANALYSIS_FAILED,
    BACKEND_UNAVAILABLE,
    CAPTURE_STOP_FAILED,
    CAPTURE_UNAVAILABLE,
    BackendUnavailable,
    CaptureStopError,
    CaptureUnavailable,
)
from instructions import STEP_INSTRUCTIONS
from models import AnalysisOutcome, AudioReference, SessionState, Step
from session_controller import SessionController

# welcome 3 + device_check 4 + positioning 5 + listening 3
RECORDING_STARTS_AT = 15.0
ANALYZING_STARTS_AT = RECORDING_STARTS_AT + 30.0


class FakeTimer:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Manual clock: timers only fire inside advance()."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[FakeTimer] = []

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.now + delay_s, callback)
        self.timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.timers if not t.cancelled and t.due <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.timers.remove(timer)
            self.now = max(self.now, timer.due)
            timer.callback()
        self.now = target


class DeferredRunner:
    def __init__(self) -> None:
        self.jobs: list[Callable[[], None]] = []

    def __call__(self, job: Callable[[], None]) -> None:
        self.jobs.append(job)

    def run_all(self) -> None:
        jobs, self.jobs = self.jobs, []
        for job in jobs:
            job()


class FakeRecorder:
    def __init__(self) -> None:
        self.permission = True
        self.start_error: Exception | None = None
        self.stop_error: Exception | None = None
        self.start_calls = 0
        self.stop_calls = 0
        self.recording = False
        self.discarded: list[AudioReference] = []

    def request_permission(self) -> bool:
        return self.permission

    def start(self) -> None:
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        self.recording = True

    def elapsed_seconds(self) -> float:
        return 0.0

    def stop(self) -> AudioReference:
        self.stop_calls += 1
        self.recording = False
        if self.stop_error is not None:
            raise self.stop_error
        return AudioReference(uri="file:///tmp/heart_sound.wav", size_bytes=4096, mime_type="audio/wav")

    def discard(self, audio: AudioReference) -> None:
        self.discarded.append(audio)


class FakeAnalysisClient:
    def __init__(self, raw: dict | None = None, error: Exception | None = None) -> None:
        self.raw = raw if raw is not None else {"predicted_class": "murmur", "confidence": 0.75}
        self.error = error
        self.calls: list[tuple[AudioReference, CancelToken | None]] = []

    def check_health(self, timeout=None, cancel_token=None) -> bool:  # noqa: ANN001
        return True

    def submit(self, audio, metadata=None, timeout=None, cancel_token=None) -> dict:  # noqa: ANN001
        self.calls.append((audio, cancel_token))
        if self.error is not None:
            raise self.error
        return self.raw


def _sync(job: Callable[[], None]) -> None:
    job()


def _make_controller(
    recorder: FakeRecorder | None = None,
    client: FakeAnalysisClient | None = None,
    runner: Callable[[Callable[[], None]], None] = _sync,
    **kwargs,  # noqa: ANN003
) -> tuple[SessionController, FakeScheduler, FakeRecorder, FakeAnalysisClient, dict]:
    scheduler = FakeScheduler()
    recorder = recorder or FakeRecorder()
    client = client or FakeAnalysisClient()
    events: dict = {"steps": [], "states": [], "ticks": [], "results": [], "errors": []}
    controller = SessionController(
        recorder=recorder,
        analysis_client=client,
        scheduler=scheduler,
        run_in_background=runner,
        on_step_change=lambda prev, step, instruction: events["steps"].append(step),
        on_state_change=lambda f, t: events["states"].append((f, t)),
        on_tick=events["ticks"].append,
        on_result=events["results"].append,
        on_error=lambda c, m: events["errors"].append((c, m)),
        **kwargs,
    )
    return controller, scheduler, recorder, client, events


def test_happy_path_visits_every_step_once() -> None:
    controller, scheduler, recorder, client, events = _make_controller()

    controller.open_session()
    scheduler.advance(120)

    assert events["steps"] == list(Step)
    assert controller.state == SessionState.COMPLETED
    assert (SessionState.IDLE, SessionState.ACTIVE) in events["states"]
    assert (SessionState.ACTIVE, SessionState.COMPLETED) in events["states"]
    assert recorder.start_calls == 1
    assert recorder.stop_calls == 1
    assert len(client.calls) == 1
    outcome = controller.outcome
    assert outcome is not None and outcome.ok
    assert outcome.result.classification.prediction == "murmur"
    assert events["results"] == [outcome]
    assert controller.session.elapsed_recording_s == 30


def test_step_advances_only_after_its_duration() -> None:
    controller, scheduler, *_ = _make_controller()

    controller.open_session()
    scheduler.advance(2.5)
    assert controller.step == Step.WELCOME
    scheduler.advance(0.5)
    assert controller.step == Step.DEVICE_CHECK
    scheduler.advance(3.5)
    assert controller.step == Step.DEVICE_CHECK
    scheduler.advance(0.5)
    assert controller.step == Step.POSITIONING


def test_recording_is_force_stopped_at_ceiling() -> None:
    instructions = dict(STEP_INSTRUCTIONS)
    instructions[Step.RECORDING] = replace(instructions[Step.RECORDING], duration_s=120.0)
    controller, scheduler, recorder, client, events = _make_controller(instructions=instructions)

    controller.open_session()
    scheduler.advance(RECORDING_STARTS_AT)
    assert controller.step == Step.RECORDING
    scheduler.advance(29)
    assert controller.step == Step.RECORDING
    scheduler.advance(1)

    assert controller.step == Step.ANALYZING
    assert controller.session.elapsed_recording_s == 30
    assert max(events["ticks"]) == 30
    scheduler.advance(200)
    assert recorder.stop_calls == 1
    assert len(client.calls) == 1
    assert events["steps"].count(Step.ANALYZING) == 1


def test_elapsed_counter_never_exceeds_ceiling() -> None:
    instructions = dict(STEP_INSTRUCTIONS)
    instructions[Step.RECORDING] = replace(instructions[Step.RECORDING], duration_s=60.0)
    controller, scheduler, _, _, events = _make_controller(instructions=instructions, max_recording_s=5)

    controller.open_session()
    scheduler.advance(RECORDING_STARTS_AT + 10)

    assert events["ticks"] == [1, 2, 3, 4, 5]
    assert controller.session.elapsed_recording_s == 5


def test_capture_failure_pauses_session() -> None:
    recorder = FakeRecorder()
    recorder.permission = False
    controller, scheduler, _, client, events = _make_controller(recorder=recorder)

    controller.open_session()
    scheduler.advance(RECORDING_STARTS_AT)

    assert controller.state == SessionState.CAPTURE_ERROR
    assert controller.step == Step.RECORDING
    assert events["errors"][0][0] == CAPTURE_UNAVAILABLE

    scheduler.advance(300)
    assert controller.step == Step.RECORDING
    assert client.calls == []


def test_retry_capture_resumes_auto_advance() -> None:
    recorder = FakeRecorder()
    recorder.start_error = CaptureUnavailable("device busy")
    controller, scheduler, _, client, events = _make_controller(recorder=recorder)

    controller.open_session()
    scheduler.advance(RECORDING_STARTS_AT)
    assert controller.state == SessionState.CAPTURE_ERROR
    assert events["errors"] == [(CAPTURE_UNAVAILABLE, "device busy")]

    recorder.start_error = None
    assert controller.retry_capture() is True
    assert controller.state == SessionState.ACTIVE

    scheduler.advance(30)
    assert controller.step == Step.ANALYZING
    assert len(client.calls) == 1


def test_retry_capture_outside_capture_error_is_noop() -> None:
    controller, *_ = _make_controller()
    assert controller.retry_capture() is False
    controller.open_session()
    assert controller.retry_capture() is False


def test_unexpected_start_error_does_not_crash() -> None:
    recorder = FakeRecorder()
    recorder.start_error = OSError("PortAudio error")
    controller, scheduler, _, _, events = _make_controller(recorder=recorder)

    controller.open_session()
    scheduler.advance(RECORDING_STARTS_AT)

    assert controller.state == SessionState.CAPTURE_ERROR
    assert events["errors"] == [(CAPTURE_UNAVAILABLE, "PortAudio error")]


def test_close_during_recording_releases_recorder() -> None:
    controller, scheduler, recorder, client, events = _make_controller()

    controller.open_session()
    scheduler.advance(RECORDING_STARTS_AT + 5)
    assert recorder.recording is True

    controller.close_session("user left")

    assert controller.state == SessionState.CLOSED
    assert recorder.stop_calls == 1
    assert recorder.recording is False
    steps_before = list(events["steps"])
    scheduler.advance(300)
    assert events["steps"] == steps_before
    assert client.calls == []
    assert controller.outcome is None


def test_close_while_submit_pending_discards_result() -> None:
    runner = DeferredRunner()
    controller, scheduler, _, client, events = _make_controller(runner=runner)

    controller.open_session()
    scheduler.advance(ANALYZING_STARTS_AT)
    assert controller.step == Step.ANALYZING
    assert len(runner.jobs) == 1

    controller.close_session()
    runner.run_all()

    _, token = client.calls[0]
    assert token is not None and token.cancelled
    assert controller.outcome is None
    assert events["results"] == []
    assert controller.state == SessionState.CLOSED


def test_analyzing_waits_for_late_outcome() -> None:
    runner = DeferredRunner()
    controller, scheduler, *_ = _make_controller(runner=runner)

    controller.open_session()
    scheduler.advance(ANALYZING_STARTS_AT + 20)
    assert controller.step == Step.ANALYZING

    runner.run_all()
    assert controller.step == Step.RESULTS
    scheduler.advance(2)
    assert controller.step == Step.COMPLETE


def test_early_outcome_waits_for_analyzing_dwell() -> None:
    controller, scheduler, *_ = _make_controller()

    controller.open_session()
    scheduler.advance(ANALYZING_STARTS_AT)
    assert controller.outcome is not None
    assert controller.step == Step.ANALYZING
    scheduler.advance(4.5)
    assert controller.step == Step.ANALYZING
    scheduler.advance(0.5)
    assert controller.step == Step.RESULTS


def test_analysis_failure_is_reported_as_outcome() -> None:
    client = FakeAnalysisClient(error=BackendUnavailable())
    controller, scheduler, _, _, events = _make_controller(client=client)

    controller.open_session()
    scheduler.advance(120)

    outcome = controller.outcome
    assert isinstance(outcome, AnalysisOutcome)
    assert outcome.ok is False
    assert outcome.error_code == BACKEND_UNAVAILABLE
    assert (BACKEND_UNAVAILABLE, outcome.error_message) in events["errors"]
    assert controller.state == SessionState.COMPLETED


def test_unexpected_worker_error_becomes_failure_outcome() -> None:
    client = FakeAnalysisClient(error=ValueError("boom"))
    controller, scheduler, *_ = _make_controller(client=client)

    controller.open_session()
    scheduler.advance(ANALYZING_STARTS_AT)

    assert controller.outcome == AnalysisOutcome(error_code=ANALYSIS_FAILED, error_message="boom")


def test_recorder_stop_failure_skips_submit() -> None:
    recorder = FakeRecorder()
    recorder.stop_error = CaptureStopError("disk full")
    controller, scheduler, _, client, _ = _make_controller(recorder=recorder)

    controller.open_session()
    scheduler.advance(ANALYZING_STARTS_AT)

    assert client.calls == []
    assert controller.outcome.error_code == CAPTURE_STOP_FAILED
    scheduler.advance(5)
    assert controller.step == Step.RESULTS


def test_open_session_is_idempotent_while_active() -> None:
    controller, *_ = _make_controller()

    first = controller.open_session()
    second = controller.open_session()

    assert first is second


def test_close_without_session_is_noop() -> None:
    controller, *_ = _make_controller()
    controller.close_session()
    assert controller.state == SessionState.IDLE


def test_new_session_after_close_starts_from_welcome() -> None:
    controller, scheduler, *_ = _make_controller()

    first = controller.open_session()
    scheduler.advance(RECORDING_STARTS_AT + 3)
    controller.close_session()
    second = controller.open_session()

    assert second.session_id == first.session_id + 1
    assert controller.step == Step.WELCOME
    assert controller.state == SessionState.ACTIVE


def test_recording_is_discarded_after_analysis() -> None:
    controller, scheduler, recorder, *_ = _make_controller()

    controller.open_session()
    scheduler.advance(ANALYZING_STARTS_AT)

    assert recorder.discarded == [controller.session.audio]


def test_recording_is_discarded_when_analysis_fails() -> None:
    client = FakeAnalysisClient(error=BackendUnavailable())
    controller, scheduler, recorder, *_ = _make_controller(client=client)

    controller.open_session()
    scheduler.advance(ANALYZING_STARTS_AT)

    assert len(recorder.discarded) == 1


def test_close_during_recording_discards_partial_recording() -> None:
    controller, scheduler, recorder, *_ = _make_controller()

    controller.open_session()
    scheduler.advance(RECORDING_STARTS_AT + 5)
    controller.close_session()

    assert len(recorder.discarded) == 1
    assert recorder.discarded[0].uri == "file:///tmp/heart_sound.wav"


def test_close_while_submit_pending_still_discards_recording() -> None:
    runner = DeferredRunner()
    controller, scheduler, recorder, *_ = _make_controller(runner=runner)

    controller.open_session()
    scheduler.advance(ANALYZING_STARTS_AT)
    controller.close_session()
    assert recorder.discarded == []

    runner.run_all()
    assert len(recorder.discarded) == 1


def test_failed_release_on_close_does_not_raise() -> None:
    recorder = FakeRecorder()
    controller, scheduler, *_ = _make_controller(recorder=recorder)

    controller.open_session()
    scheduler.advance(RECORDING_STARTS_AT + 5)
    recorder.stop_error = CaptureStopError("device vanished")
    controller.close_session()

    assert controller.state == SessionState.CLOSED
    assert recorder.discarded == []
