"""HTTP client for the heart sound classification service.

Every request runs on a short-lived ``httpx.Client`` in its own thread,
tied to a ``CancelToken``. The caller waits for either the response or the
token. The deadline is a timer that cancels that token, and cancelling
closes the client and returns to the caller at once. A caller token (the
session's) is linked as parent so closing the session aborts the upload the
same way.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import httpx

from cancellation import REASON_TIMEOUT, CancelToken
from config import ClientConfig
from errors import (
    AnalysisCancelled,
    AnalysisRequestFailed,
    AnalysisTimeout,
    AudioTooLarge,
    BackendUnavailable,
    EmptyAudio,
    HeartCheckError,
    MalformedResponse,
)
from models import AudioReference, RawAnalysisResponse

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD = ("heart_sound.m4a", "audio/mp4")

_UPLOAD_TYPES: Dict[str, Tuple[str, str]] = {
    "audio/mp4": DEFAULT_UPLOAD,
    "audio/m4a": DEFAULT_UPLOAD,
    "audio/x-m4a": DEFAULT_UPLOAD,
    "audio/wav": ("heart_sound.wav", "audio/wav"),
    "audio/x-wav": ("heart_sound.wav", "audio/wav"),
}


class HeartSoundAnalysisClient:
    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._config = config or ClientConfig()
        self._transport = transport

    @property
    def config(self) -> ClientConfig:
        return self._config

    def check_health(
        self,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> bool:
        """Return True only when the service reports ``status == "healthy"``."""
        if timeout is None:
            timeout = self._config.health_timeout_s
        try:
            response = self._send("GET", self._config.health_path, timeout, cancel_token)
        except HeartCheckError as exc:
            logger.warning("Health check failed: %s", exc.message)
            return False
        if not response.is_success:
            logger.warning("Health check failed: HTTP %d", response.status_code)
            return False
        try:
            body = response.json()
        except ValueError:
            logger.warning("Health check returned a non-JSON body")
            return False
        status = body.get("status") if isinstance(body, dict) else None
        if status != "healthy":
            logger.warning("Analysis service is not healthy: %s", status)
            return False
        return True

    def submit(
        self,
        audio: AudioReference,
        metadata: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> RawAnalysisResponse:
        """Upload one recording and return the raw service response.

        Raises EmptyAudio / AudioTooLarge before any network I/O,
        BackendUnavailable when the health check fails, AnalysisTimeout,
        AnalysisCancelled or AnalysisRequestFailed otherwise. A 200 response
        whose body is not a JSON object yields an empty dict.
        """
        if timeout is None:
            timeout = self._config.request_timeout_s
        payload = self._read_payload(audio)

        if not self.check_health(cancel_token=cancel_token):
            if cancel_token is not None and cancel_token.cancelled:
                raise AnalysisCancelled()
            raise BackendUnavailable()

        filename, content_type = _upload_name_and_type(audio.mime_type)
        upload_metadata = self._build_metadata(len(payload), content_type, metadata)
        logger.info("Uploading %s (%d bytes, %s)", filename, len(payload), content_type)

        response = self._send(
            "POST",
            self._config.analyze_path,
            timeout,
            cancel_token,
            files={"audio_file": (filename, payload, content_type)},
            data={"metadata": json.dumps(upload_metadata)},
            headers={"Accept": "application/json"},
        )
        if not response.is_success:
            message = classify_error_response(response)
            logger.error("Analysis request failed: HTTP %d - %s", response.status_code, message)
            raise AnalysisRequestFailed(message, status_code=response.status_code)

        try:
            raw = _parse_body(response)
        except MalformedResponse as exc:
            logger.warning("%s; continuing with an empty response", exc.message)
            return {}
        logger.info(
            "Analysis completed: prediction=%s confidence=%s",
            raw.get("predicted_class"),
            raw.get("confidence"),
        )
        return raw

    def get_model_info(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        if timeout is None:
            timeout = self._config.health_timeout_s
        try:
            response = self._send("GET", self._config.model_info_path, timeout)
            if not response.is_success:
                return None
            return _parse_body(response)
        except HeartCheckError as exc:
            logger.warning("Could not get model info: %s", exc.message)
            return None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _send(
        self,
        method: str,
        path: str,
        timeout: float,
        cancel_token: Optional[CancelToken] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        request_token = CancelToken(parent=cancel_token)
        if request_token.cancelled:
            raise AnalysisCancelled()

        client = httpx.Client(base_url=self._config.base_url, transport=self._transport, timeout=timeout)
        transfer = _Transfer(client, method, path, kwargs)
        request_token.add_callback(transfer.done.set)
        request_token.add_callback(lambda: _close_quietly(client))
        deadline = threading.Timer(timeout, request_token.cancel, args=(REASON_TIMEOUT,))
        deadline.daemon = True
        deadline.start()
        threading.Thread(target=transfer.run, name="analysis-request", daemon=True).start()
        try:
            transfer.done.wait()
        finally:
            deadline.cancel()

        # A cancelled transfer is abandoned; its thread ends when the socket
        # errors out or the client timeout expires.
        if request_token.cancelled:
            raise _cancelled_error(request_token, timeout)
        _close_quietly(client)

        exc = transfer.error
        if exc is not None:
            if isinstance(exc, httpx.TimeoutException):
                raise AnalysisTimeout(f"Request timeout after {timeout:g}s") from exc
            if isinstance(exc, (httpx.HTTPError, RuntimeError, OSError)):
                raise AnalysisRequestFailed(f"Network failed: {exc}") from exc
            raise exc
        if transfer.response is None:
            raise AnalysisRequestFailed("Network failed: no response")
        return transfer.response

    def _read_payload(self, audio: AudioReference) -> bytes:
        path = audio.path
        limit = self._config.max_upload_bytes
        try:
            size = path.stat().st_size
            if size > limit:
                raise AudioTooLarge(
                    f"Audio file too large: {size} bytes. Maximum size is {limit // (1024 * 1024)}MB."
                )
            payload = path.read_bytes()
        except OSError as exc:
            raise EmptyAudio(f"Failed to read audio file for analysis: {exc}") from exc

        if not payload:
            raise EmptyAudio()
        if len(payload) > limit:
            raise AudioTooLarge(f"Audio file too large: {len(payload)} bytes.")
        if len(payload) < self._config.min_plausible_bytes:
            logger.warning(
                "Audio file is very small: %d bytes. This may cause analysis issues.", len(payload)
            )
        return payload

    def _build_metadata(
        self,
        file_size: int,
        mime_type: str,
        extra: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "device": self._config.device_tag,
            "recording_type": self._config.recording_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "platform": self._config.platform,
        }
        metadata.update(extra or {})
        metadata["file_size"] = file_size
        metadata["mime_type"] = mime_type
        return metadata


class _Transfer:
    """One request run off the calling thread so the caller can stop waiting."""

    def __init__(self, client: httpx.Client, method: str, path: str, kwargs: Dict[str, Any]) -> None:
        self._client = client
        self._method = method
        self._path = path
        self._kwargs = kwargs
        self.done = threading.Event()
        self.response: Optional[httpx.Response] = None
        self.error: Optional[BaseException] = None

    def run(self) -> None:
        try:
            self.response = self._client.request(self._method, self._path, **self._kwargs)
        except Exception as exc:
            self.error = exc
        finally:
            self.done.set()


def _close_quietly(client: httpx.Client) -> None:
    try:
        client.close()
    except (RuntimeError, OSError) as exc:
        logger.debug("Closing HTTP client failed: %s", exc)


def classify_error_response(response: httpx.Response) -> str:
    """Turn a non-2xx response into one human-readable message."""
    text = response.text
    fallback = f"Analysis service error: {response.status_code} {response.reason_phrase}".strip()
    if not text.strip():
        return fallback
    try:
        body = json.loads(text)
    except ValueError:
        return text

    if isinstance(body, dict):
        detail = body.get("detail")
        if isinstance(detail, list) and detail:
            entries = "; ".join(_format_validation_entry(entry) for entry in detail)
            return f"Validation error: {entries}"
        for key in ("detail", "error", "message"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


def _format_validation_entry(entry: Any) -> str:
    if not isinstance(entry, dict):
        return str(entry)
    loc = entry.get("loc")
    if isinstance(loc, (list, tuple)):
        field = ".".join(str(part) for part in loc)
    else:
        field = str(loc or "?")
    return f"{field}: {entry.get('msg', '')}"


def _parse_body(response: httpx.Response) -> RawAnalysisResponse:
    try:
        body = response.json()
    except ValueError as exc:
        raise MalformedResponse(f"Response body is not valid JSON: {exc}") from exc
    if not isinstance(body, dict):
        raise MalformedResponse(f"Expected a JSON object, got {type(body).__name__}")
    return body


def _cancelled_error(token: CancelToken, timeout: float) -> HeartCheckError:
    if token.reason == REASON_TIMEOUT:
        return AnalysisTimeout(f"Request timeout after {timeout:g}s")
    return AnalysisCancelled(f"Analysis cancelled: {token.reason}")


def _upload_name_and_type(mime_type: str) -> Tuple[str, str]:
    return _UPLOAD_TYPES.get((mime_type or "").lower(), DEFAULT_UPLOAD)

