"""Core data models for the guided heart check."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

SCHEMA_VERSION = "2.1"

# Untrusted JSON object returned by the classification service.
RawAnalysisResponse = Dict[str, Any]


class SessionState(str, Enum):
    IDLE = "IDLE"
    ACTIVE = "ACTIVE"
    CAPTURE_ERROR = "CAPTURE_ERROR"
    COMPLETED = "COMPLETED"
    CLOSED = "CLOSED"


class Step(str, Enum):
    WELCOME = "welcome"
    DEVICE_CHECK = "device_check"
    POSITIONING = "positioning"
    LISTENING = "listening"
    RECORDING = "recording"
    ANALYZING = "analyzing"
    RESULTS = "results"
    COMPLETE = "complete"

    def next(self) -> Optional["Step"]:
        order = list(Step)
        index = order.index(self)
        if index + 1 < len(order):
            return order[index + 1]
        return None


class RiskLevel(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(RiskLevel).index(self)


class Urgency(str, Enum):
    ROUTINE = "routine"
    FOLLOW_UP = "follow_up"
    URGENT = "urgent"
    IMMEDIATE = "immediate"

    @property
    def rank(self) -> int:
        return list(Urgency).index(self)


@dataclass(frozen=True)
class Instruction:
    title: str
    subtitle: str
    voice: str
    duration_s: float


@dataclass(frozen=True)
class AudioReference:
    uri: str
    size_bytes: int
    mime_type: str = ""
    duration_s: float = 0.0

    @property
    def path(self) -> Path:
        """Local file behind ``uri``; plain paths are accepted too."""
        parsed = urlparse(self.uri)
        if parsed.scheme == "file":
            return Path(url2pathname(parsed.path))
        return Path(self.uri)


@dataclass(frozen=True)
class AudioFeatures:
    duration: float
    sample_rate: int
    energy: float
    zero_crossing_rate: float
    spectral_centroid: float
    spectral_bandwidth: float
    spectral_rolloff: float
    mfcc_features: List[float]
    chroma_features: List[float]
    tempo: float
    beat_count: int
    estimated_heart_rate: float
    rhythm_regularity: float
    signal_quality: float


@dataclass(frozen=True)
class Classification:
    prediction: str
    condition: str
    confidence: float
    all_probabilities: Dict[str, float]
    model_used: str
    feature_count: int
    features_used: List[str]
    heart_rate_bpm: float
    confidence_level: str
    risk_assessment: str


@dataclass(frozen=True)
class Findings:
    murmur_detected: bool
    arrhythmia_detected: bool
    abnormal_sounds: bool
    valve_issues: bool


@dataclass(frozen=True)
class MedicalAnalysis:
    clinical_assessment: str
    risk_level: RiskLevel
    urgency: Urgency
    recommendations: List[str]
    findings: Findings
    confidence_score: float


@dataclass(frozen=True)
class QualityMetrics:
    audio_quality: float
    noise_level: float
    signal_to_noise_ratio: float
    analysis_reliability: float
    confidence_level: str


@dataclass(frozen=True)
class NormalizedAnalysisResult:
    timestamp: str
    request_id: str
    filename: str
    file_size_bytes: int
    analysis_method: str
    processing_time_s: float
    audio_features: AudioFeatures
    classification: Classification
    medical_analysis: MedicalAnalysis
    quality_metrics: QualityMetrics
    schema_version: str = SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        medical = data["medical_analysis"]
        medical["risk_level"] = self.medical_analysis.risk_level.value
        medical["urgency"] = self.medical_analysis.urgency.value
        return data


@dataclass(frozen=True)
class AnalysisOutcome:
    result: Optional[NormalizedAnalysisResult] = None
    error_code: str = ""
    error_message: str = ""

    @property
    def ok(self) -> bool:
        return self.result is not None


@dataclass
class Session:
    session_id: int
    step: Step = Step.WELCOME
    elapsed_recording_s: int = 0
    audio: Optional[AudioReference] = None
    outcome: Optional[AnalysisOutcome] = None
    started_at: float = field(default_factory=time.time)
