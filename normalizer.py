"""
Result normalization.

Turns the raw, possibly partial service response into a fully populated
``NormalizedAnalysisResult``. Each field takes the server value when it is
present and well-typed, otherwise the entry from ``DEFAULTS``. ``normalize``
never raises: a reachable server with a degenerate payload still yields a
renderable result.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import risk_engine
from models import (
    AudioFeatures,
    AudioReference,
    Classification,
    Findings,
    MedicalAnalysis,
    NormalizedAnalysisResult,
    QualityMetrics,
    RawAnalysisResponse,
)
from risk_engine import NORMAL_LABEL

ASSUMED_DURATION_S = 30.0
FIXED_SAMPLE_RATE = 44100

DEFAULTS: Dict[str, Any] = {
    "predicted_class": NORMAL_LABEL,
    "confidence": 0.85,
    "processing_time": 0.0,
    # features
    "energy": 0.5,
    "zero_crossing_rate": 0.1,
    "spectral_centroid": 1000.0,
    "spectral_bandwidth": 800.0,
    "spectral_rolloff": 2000.0,
    "mfcc_mean": 0.0,
    "tempo": 72.0,
    "harmonic_ratio": 0.9,
    "signal_quality": 0.9,
    "noise_level": 0.1,
    "signal_to_noise_ratio": 20.0,
    # medical recommendation
    "recommendation": "Continue monitoring",
    "follow_up": "Routine follow-up",
    "additional_notes": "",
    # not sent by the service
    "chroma_features": (0.5, 0.3, 0.2),
    "model_used": "LSTM_Neural_Network_v2.1.0",
    "analysis_method": "enhanced_lstm_v2.1.0",
    "filename": "heart_sound.m4a",
}

CONDITION_NAMES = {
    "normal": "Normal Heart Sounds",
    "murmur": "Heart Murmur Detected",
    "extrasystole": "Irregular Heart Rhythm",
    "artifact": "Recording Quality Issue",
    "extrahls": "Additional Heart Sounds",
}

MURMUR_LABEL = "murmur"
ARRHYTHMIA_LABELS = ("extrasystole",)


def confidence_level(confidence: float) -> str:
    if confidence >= 0.8:
        return "high"
    if confidence >= 0.6:
        return "medium"
    return "low"


def risk_assessment_tag(label: str, confidence: float) -> str:
    if label == NORMAL_LABEL and confidence > 0.8:
        return "low_risk"
    if label != NORMAL_LABEL and confidence > 0.7:
        if label == MURMUR_LABEL or label in ARRHYTHMIA_LABELS:
            return "moderate_risk"
        return "needs_review"
    return "uncertain_requires_review"


def derive_findings(label: str) -> Findings:
    return Findings(
        murmur_detected=label == MURMUR_LABEL,
        arrhythmia_detected=label in ARRHYTHMIA_LABELS,
        abnormal_sounds=label != NORMAL_LABEL,
        valve_issues=label == MURMUR_LABEL,
    )


def normalize(raw: RawAnalysisResponse, audio: Optional[AudioReference] = None) -> NormalizedAnalysisResult:
    raw = raw if isinstance(raw, dict) else {}
    features = _mapping(raw, "features")
    recommendation = _mapping(raw, "medical_recommendation")

    label = _text(raw, "predicted_class")
    confidence = min(max(_number(raw, "confidence"), 0.0), 1.0)
    bucket = confidence_level(confidence)
    tempo = _number(features, "tempo")
    signal_quality = _number(features, "signal_quality")
    feature_names = [str(name) for name in features]

    urgency_hint = recommendation.get("urgency", raw.get("urgency"))
    assessment = risk_engine.assess(
        label,
        confidence,
        urgency_hint=urgency_hint,
        heart_rate=tempo,
        notes=_text(recommendation, "additional_notes"),
    )

    audio_features = AudioFeatures(
        duration=ASSUMED_DURATION_S,
        sample_rate=FIXED_SAMPLE_RATE,
        energy=_number(features, "energy"),
        zero_crossing_rate=_number(features, "zero_crossing_rate"),
        spectral_centroid=_number(features, "spectral_centroid"),
        spectral_bandwidth=_number(features, "spectral_bandwidth"),
        spectral_rolloff=_number(features, "spectral_rolloff"),
        mfcc_features=[_number(features, "mfcc_mean")],
        chroma_features=list(DEFAULTS["chroma_features"]),
        tempo=tempo,
        beat_count=int(round(tempo * 0.5)),
        estimated_heart_rate=tempo,
        rhythm_regularity=_number(features, "harmonic_ratio"),
        signal_quality=signal_quality,
    )
    classification = Classification(
        prediction=label,
        condition=CONDITION_NAMES.get(label, label),
        confidence=confidence,
        all_probabilities=_probabilities(raw.get("probabilities")),
        model_used=DEFAULTS["model_used"],
        feature_count=len(feature_names),
        features_used=feature_names,
        heart_rate_bpm=tempo,
        confidence_level=bucket,
        risk_assessment=risk_assessment_tag(label, confidence),
    )
    medical_analysis = MedicalAnalysis(
        clinical_assessment=assessment.clinical_assessment,
        risk_level=assessment.risk_level,
        urgency=assessment.urgency,
        recommendations=[
            _text(recommendation, "recommendation"),
            _text(recommendation, "follow_up"),
        ],
        findings=derive_findings(label),
        confidence_score=confidence,
    )
    quality_metrics = QualityMetrics(
        audio_quality=signal_quality,
        noise_level=_number(features, "noise_level"),
        signal_to_noise_ratio=_number(features, "signal_to_noise_ratio"),
        analysis_reliability=confidence,
        confidence_level=bucket,
    )

    return NormalizedAnalysisResult(
        timestamp=_timestamp(raw.get("timestamp")),
        request_id=str(raw.get("request_id") or ""),
        filename=DEFAULTS["filename"],
        file_size_bytes=audio.size_bytes if audio is not None else 0,
        analysis_method=DEFAULTS["analysis_method"],
        processing_time_s=_number(raw, "processing_time"),
        audio_features=audio_features,
        classification=classification,
        medical_analysis=medical_analysis,
        quality_metrics=quality_metrics,
    )


def _is_number(value: Any) -> bool:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # JSON integers beyond float range
        return False


def _number(source: Mapping[str, Any], key: str) -> float:
    value = source.get(key)
    if _is_number(value):
        return float(value)
    return float(DEFAULTS[key])


def _text(source: Mapping[str, Any], key: str) -> str:
    value = source.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return DEFAULTS[key]


def _mapping(source: Mapping[str, Any], key: str) -> Dict[str, Any]:
    value = source.get(key)
    return value if isinstance(value, dict) else {}


def _probabilities(value: Any) -> Dict[str, float]:
    if not isinstance(value, dict):
        return {}
    return {str(name): float(p) for name, p in value.items() if _is_number(p)}


def _timestamp(value: Any) -> str:
    if isinstance(value, str) and value:
        return value
    return datetime.now(timezone.utc).isoformat()


def summarize(result: NormalizedAnalysisResult) -> List[str]:
    """Short display lines for a result, most important first."""
    classification = result.classification
    medical = result.medical_analysis
    return [
        f"Primary finding: {classification.condition}",
        f"Confidence: {round(classification.confidence * 100)}% ({classification.confidence_level})",
        f"Heart rate: {round(classification.heart_rate_bpm)} BPM",
        f"Risk level: {medical.risk_level.value.upper()}",
        f"Urgency: {medical.urgency.value.replace('_', ' ')}",
    ]


def summarize_model_info(info: Optional[Mapping[str, Any]]) -> List[str]:
    if not info:
        return ["Model information is unavailable."]
    lines = []
    for key, value in info.items():
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(item) for item in value)
        elif isinstance(value, dict):
            continue
        lines.append(f"{str(key).replace('_', ' ').capitalize()}: {value}")
    return lines or ["Model information is unavailable."]
