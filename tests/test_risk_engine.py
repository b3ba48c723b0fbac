from __future__ import annotations

import pytest

import risk_engine
from models import RiskLevel, Urgency


@pytest.mark.parametrize(
    "label, confidence, hint, expected",
    [
        ("normal", 0.85, "low", (RiskLevel.LOW, Urgency.ROUTINE)),
        ("murmur", 0.75, "medium", (RiskLevel.HIGH, Urgency.URGENT)),
        ("severe_arrhythmia", 0.9, "high", (RiskLevel.CRITICAL, Urgency.IMMEDIATE)),
    ],
)
def test_assess_known_cases(label, confidence, hint, expected) -> None:  # noqa: ANN001
    result = risk_engine.assess(label, confidence, urgency_hint=hint)
    assert (result.risk_level, result.urgency) == expected


def test_rules_apply_in_order() -> None:
    assert risk_engine.classify_risk("normal", 0.8) == (RiskLevel.LOW, Urgency.ROUTINE)
    assert risk_engine.classify_risk("normal", 0.79) == (RiskLevel.MODERATE, Urgency.FOLLOW_UP)
    # critical keywords beat abnormal ones
    assert risk_engine.classify_risk("Acute_Murmur", 0.71) == (RiskLevel.CRITICAL, Urgency.IMMEDIATE)
    assert risk_engine.classify_risk("Abnormal", 0.71) == (RiskLevel.HIGH, Urgency.URGENT)
    assert risk_engine.classify_risk("murmur", 0.7) == (RiskLevel.MODERATE, Urgency.FOLLOW_UP)
    assert risk_engine.classify_risk("artifact", 0.99) == (RiskLevel.MODERATE, Urgency.FOLLOW_UP)


def test_hint_raises_but_never_lowers_urgency() -> None:
    raised = risk_engine.assess("artifact", 0.5, urgency_hint="high")
    assert raised.risk_level == RiskLevel.MODERATE
    assert raised.urgency == Urgency.URGENT

    kept = risk_engine.assess("severe_arrhythmia", 0.9, urgency_hint="low")
    assert kept.urgency == Urgency.IMMEDIATE


@pytest.mark.parametrize("hint", [None, "", "unknown", 3])
def test_unusable_hint_is_ignored(hint) -> None:  # noqa: ANN001
    assert risk_engine.assess("normal", 0.9, urgency_hint=hint).urgency == Urgency.ROUTINE


def test_hint_mapping_is_case_insensitive() -> None:
    assert risk_engine.map_urgency_hint(" HIGH ") == Urgency.URGENT
    assert risk_engine.map_urgency_hint("Medium") == Urgency.FOLLOW_UP


def test_normal_template() -> None:
    text = risk_engine.clinical_assessment("normal", 0.92, 71.6)
    assert text.startswith("Heart sound analysis indicates normal cardiac function.")
    assert "72 BPM" in text
    assert "92.0% confidence" in text


def test_abnormal_template_uses_notes_or_default() -> None:
    text = risk_engine.clinical_assessment("murmur", 0.75, 88)
    assert "detected: murmur" in text
    assert "Analysis confidence: 75.0%" in text
    assert text.endswith(risk_engine.DEFAULT_NOTES)

    noted = risk_engine.clinical_assessment("murmur", 0.75, 88, notes="Systolic murmur at apex.")
    assert noted.endswith("Systolic murmur at apex.")


def test_template_selected_by_exact_label_match() -> None:
    text = risk_engine.clinical_assessment("Normal", 0.9, 70)
    assert text.startswith("Heart sound analysis detected: Normal.")


def test_assess_is_deterministic() -> None:
    first = risk_engine.assess("extrasystole", 0.81, urgency_hint="medium", heart_rate=95)
    second = risk_engine.assess("extrasystole", 0.81, urgency_hint="medium", heart_rate=95)
    assert first == second
