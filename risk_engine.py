"""
Risk assessment for a normalized prediction.

Rules are evaluated in order and the first match wins:

    1. normal label, confidence >= 0.8            -> low / routine
    2. severe|critical|emergency|acute, conf > 0.7 -> critical / immediate
    3. murmur|arrhythmia|abnormal, conf > 0.7      -> high / urgent
    4. anything else                               -> moderate / follow_up

The service may also send an urgency hint (low|medium|high). It can raise
the urgency picked by the rules but never lower it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from models import RiskLevel, Urgency

NORMAL_LABEL = "normal"

CRITICAL_KEYWORDS = ("severe", "critical", "emergency", "acute")
ABNORMAL_KEYWORDS = ("murmur", "arrhythmia", "abnormal")

HINT_URGENCY = {
    "high": Urgency.URGENT,
    "medium": Urgency.FOLLOW_UP,
    "low": Urgency.ROUTINE,
}

NORMAL_TEMPLATE = (
    "Heart sound analysis indicates normal cardiac function. Heart rate is {heart_rate} BPM "
    "with {confidence_pct:.1f}% confidence. No significant abnormalities detected in the "
    "cardiac rhythm or heart sounds."
)
ABNORMAL_TEMPLATE = (
    "Heart sound analysis detected: {label}. Heart rate is {heart_rate} BPM. "
    "Analysis confidence: {confidence_pct:.1f}%. {notes}"
)
DEFAULT_NOTES = "Consider professional medical evaluation."


@dataclass(frozen=True)
class RiskAssessment:
    risk_level: RiskLevel
    urgency: Urgency
    clinical_assessment: str


def classify_risk(label: str, confidence: float) -> tuple[RiskLevel, Urgency]:
    lowered = label.lower()
    if label == NORMAL_LABEL and confidence >= 0.8:
        return RiskLevel.LOW, Urgency.ROUTINE
    if confidence > 0.7 and any(word in lowered for word in CRITICAL_KEYWORDS):
        return RiskLevel.CRITICAL, Urgency.IMMEDIATE
    if confidence > 0.7 and any(word in lowered for word in ABNORMAL_KEYWORDS):
        return RiskLevel.HIGH, Urgency.URGENT
    return RiskLevel.MODERATE, Urgency.FOLLOW_UP


def map_urgency_hint(hint: Optional[str]) -> Optional[Urgency]:
    if not isinstance(hint, str):
        return None
    return HINT_URGENCY.get(hint.strip().lower())


def clinical_assessment(label: str, confidence: float, heart_rate: float, notes: str = "") -> str:
    values = {
        "label": label,
        "heart_rate": round(heart_rate),
        "confidence_pct": confidence * 100,
        "notes": notes or DEFAULT_NOTES,
    }
    if label == NORMAL_LABEL:
        return NORMAL_TEMPLATE.format(**values)
    return ABNORMAL_TEMPLATE.format(**values)


def assess(
    label: str,
    confidence: float,
    urgency_hint: Optional[str] = None,
    heart_rate: float = 72.0,
    notes: str = "",
) -> RiskAssessment:
    risk_level, urgency = classify_risk(label, confidence)
    hinted = map_urgency_hint(urgency_hint)
    if hinted is not None and hinted.rank > urgency.rank:
        urgency = hinted
    return RiskAssessment(
        risk_level=risk_level,
        urgency=urgency,
        clinical_assessment=clinical_assessment(label, confidence, heart_rate, notes),
    )
