"""Shared error codes, user-facing messages and the exception hierarchy."""

from __future__ import annotations

from typing import Any, Dict, Optional

CAPTURE_UNAVAILABLE = "CAPTURE_UNAVAILABLE"
CAPTURE_STOP_FAILED = "CAPTURE_STOP_FAILED"
EMPTY_AUDIO = "EMPTY_AUDIO"
AUDIO_TOO_LARGE = "AUDIO_TOO_LARGE"
BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
ANALYSIS_TIMEOUT = "ANALYSIS_TIMEOUT"
ANALYSIS_CANCELLED = "ANALYSIS_CANCELLED"
ANALYSIS_REQUEST_FAILED = "ANALYSIS_REQUEST_FAILED"
MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
ANALYSIS_FAILED = "ANALYSIS_FAILED"

ERROR_MESSAGES = {
    CAPTURE_UNAVAILABLE: "Microphone is unavailable. Check permissions and that no other app is recording.",
    CAPTURE_STOP_FAILED: "Recording could not be finished, please record again.",
    EMPTY_AUDIO: "Audio file is empty - no data to analyze. Please record again.",
    AUDIO_TOO_LARGE: "Audio file is too large. Maximum size is 10MB.",
    BACKEND_UNAVAILABLE: "Analysis service is currently unavailable, please retry later.",
    ANALYSIS_TIMEOUT: "Analysis timed out, please try again.",
    ANALYSIS_CANCELLED: "Analysis was cancelled.",
    ANALYSIS_REQUEST_FAILED: "Analysis service returned an error.",
    MALFORMED_RESPONSE: "Analysis service response format is invalid.",
    ANALYSIS_FAILED: "Analysis failed unexpectedly.",
}


class HeartCheckError(Exception):
    """Base exception for capture and analysis failures."""

    code = ANALYSIS_FAILED

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None) -> None:
        message = message or ERROR_MESSAGES[self.code]
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class CaptureUnavailable(HeartCheckError):
    code = CAPTURE_UNAVAILABLE


class CaptureStopError(HeartCheckError):
    code = CAPTURE_STOP_FAILED


class EmptyAudio(HeartCheckError):
    code = EMPTY_AUDIO


class AudioTooLarge(HeartCheckError):
    code = AUDIO_TOO_LARGE


class BackendUnavailable(HeartCheckError):
    code = BACKEND_UNAVAILABLE


class AnalysisTimeout(HeartCheckError):
    code = ANALYSIS_TIMEOUT


class AnalysisCancelled(HeartCheckError):
    code = ANALYSIS_CANCELLED


class AnalysisRequestFailed(HeartCheckError):
    code = ANALYSIS_REQUEST_FAILED

    def __init__(
        self,
        message: str = "",
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details={"status_code": status_code, **(details or {})})
        self.status_code = status_code


class MalformedResponse(HeartCheckError):
    code = MALFORMED_RESPONSE
