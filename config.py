"""JSON-based config store and the analysis client configuration."""

from __future__ import annotations

import json
import os
import platform
from dataclasses import dataclass
from pathlib import Path

BACKEND_URL_ENV = "HEART_CHECK_BACKEND_URL"
DEFAULT_BACKEND_URL = "http://localhost:8000"
DEFAULT_DEVICE_TAG = "desktop_stethoscope"


@dataclass(frozen=True)
class ClientConfig:
    base_url: str = DEFAULT_BACKEND_URL
    health_path: str = "/health"
    analyze_path: str = "/analyze_heart_sound"
    model_info_path: str = "/model_info"
    health_timeout_s: float = 5.0
    request_timeout_s: float = 30.0
    max_upload_bytes: int = 10 * 1024 * 1024
    min_plausible_bytes: int = 1000
    device_tag: str = DEFAULT_DEVICE_TAG
    recording_type: str = "guided_capture"
    platform: str = f"desktop_{platform.system().lower() or 'unknown'}"


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "heart_check" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_backend_url(self) -> str:
        env_url = os.getenv(BACKEND_URL_ENV, "")
        if env_url:
            return env_url
        data = self._read_all()
        return str(data.get("backend_url", DEFAULT_BACKEND_URL))

    def set_backend_url(self, url: str) -> None:
        data = self._read_all()
        data["backend_url"] = url.rstrip("/")
        self._write_all(data)

    def get_device_tag(self) -> str:
        data = self._read_all()
        return str(data.get("device_tag", DEFAULT_DEVICE_TAG))

    def set_device_tag(self, tag: str) -> None:
        data = self._read_all()
        data["device_tag"] = tag
        self._write_all(data)

    def load_client_config(self) -> ClientConfig:
        data = self._read_all()
        defaults = ClientConfig()
        return ClientConfig(
            base_url=self.get_backend_url(),
            health_timeout_s=_as_float(data.get("health_timeout_s"), defaults.health_timeout_s),
            request_timeout_s=_as_float(data.get("request_timeout_s"), defaults.request_timeout_s),
            device_tag=self.get_device_tag(),
        )

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def _as_float(value: object, default: float) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return float(value)
    return default
