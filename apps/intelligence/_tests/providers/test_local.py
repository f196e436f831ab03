"""Tests for the LocalClassifier."""

import math

import pytest

from apps.intelligence.providers.base import assigned_team
from apps.orchestration.dtos import Entities, ExtractedFields


def test_classify_accident_with_injury(local_classifier):
    fields = local_classifier.classify(
        "A student slipped in the library and is bleeding from the head.", []
    )

    assert fields.incident_type == "accident"
    assert "injury" in fields.risk_indicators
    assert fields.entities.location == "library"
    assert fields.severity_score == 60
    assert fields.severity_label == "High"


def test_classify_weapon_threat_is_critical(local_classifier):
    fields = local_classifier.classify(
        "Urgent: a man with a knife is threatening people near the cafeteria right now, we are terrified",
        ["img-1"],
    )

    assert fields.incident_type == "harassment"
    assert {"weapon", "threat"} <= set(fields.risk_indicators)
    assert fields.emotion == "distressed"
    assert fields.severity_score == 100
    assert fields.severity_label == "Critical"


def test_classify_unknown_text_is_low_other(local_classifier):
    fields = local_classifier.classify("Something odd happened", [])

    assert fields.incident_type == "other"
    assert fields.severity_score == 20
    assert fields.severity_label == "Low"
    assert fields.emotion == "neutral"


def test_classify_extracts_time(local_classifier):
    fields = local_classifier.classify("The elevator was broken yesterday at 9:30 am", [])
    assert fields.incident_type == "infrastructure"
    assert fields.entities.time == "yesterday"


def test_classify_is_deterministic(local_classifier):
    text = "Phishing email asked for my password"
    assert local_classifier.classify(text, []) == local_classifier.classify(text, [])


def test_summarize_uses_label_type_and_team(local_classifier):
    fields = ExtractedFields(incident_type="medical", severity_score=80)
    summary = local_classifier.summarize(fields, "Someone fainted in hall B. They are breathing.")

    assert summary.summary == "Critical severity medical incident: Someone fainted in hall B."
    assert summary.urgency == "immediate"
    assert summary.recommended_actions[-1] == "Assign to Emergency Response Team"


@pytest.mark.parametrize(
    "score,urgency",
    [(10, "routine"), (30, "within_24_hours"), (60, "within_1_hour"), (90, "immediate")],
)
def test_summary_urgency_follows_score(local_classifier, score, urgency):
    fields = ExtractedFields(incident_type="other", severity_score=score)
    assert local_classifier.summarize(fields, "text").urgency == urgency


def test_embedding_is_unit_length_and_stable(local_classifier):
    first = local_classifier.embed("water leak in the basement")
    second = local_classifier.embed("water leak in the basement")

    assert len(first) == 64
    assert first == second
    assert math.isclose(math.sqrt(sum(v * v for v in first)), 1.0)


def test_embedding_of_empty_text_is_zero(local_classifier):
    assert local_classifier.embed("") == [0.0] * 64


def test_validate_routing_flags_under_routing(local_classifier):
    validation = local_classifier.validate_routing(
        "Critical severity other incident: x", "LogOnly", ["low_severity"]
    )

    assert validation.agrees_with_routing is False
    assert validation.override_suggested is True
    assert validation.suggested_route == "Escalate"


def test_validate_routing_accepts_stricter_route(local_classifier):
    validation = local_classifier.validate_routing(
        "High severity accident incident: x", "Immediate", ["weapon_or_injury"]
    )
    assert validation.agrees_with_routing is True


def test_review_reports_missing_information_and_legal(local_classifier):
    fields = ExtractedFields(incident_type="harassment", severity_score=40)
    outcome = local_classifier.review("Medium severity harassment incident", "LogOnly", fields)

    assert outcome.missing_information == ["location", "time"]
    assert outcome.legal_considerations
    assert outcome.overall_passed is False


def test_review_passes_with_complete_entities(local_classifier):
    fields = ExtractedFields(
        incident_type="infrastructure",
        severity_score=20,
        entities=Entities(location="gym", time="today"),
    )
    outcome = local_classifier.review("Low severity infrastructure incident", "LogOnly", fields)

    assert outcome.overall_passed is True
    assert outcome.legal_considerations == []


@pytest.mark.parametrize(
    "incident_type,label,team",
    [
        ("cyber", "Critical", "Emergency Response Team"),
        ("cyber", "High", "Priority Response Team"),
        ("cyber", "Low", "IT Security Team"),
        ("harassment", "Medium", "Student Affairs"),
        ("other", "Low", "General Support"),
    ],
)
def test_assigned_team(incident_type, label, team):
    assert assigned_team(incident_type, label) == team
