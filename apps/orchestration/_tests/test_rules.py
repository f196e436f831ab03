"""Tests for the routing rules and the human review predicate."""

from django.test import SimpleTestCase

from apps.orchestration.dtos import ExtractedFields, ReviewOutcome
from apps.orchestration.rules import decide, needs_human_review


def fields(score=30, incident_type="infrastructure", emotion="neutral", risks=()):
    return ExtractedFields(
        incident_type=incident_type,
        severity_score=score,
        emotion=emotion,
        risk_indicators=list(risks),
    )


class DecideTests(SimpleTestCase):
    """Test decide()."""

    def test_critical_score_escalates(self):
        decision = decide(fields(score=85))
        assert decision.route == "Escalate"
        assert decision.rules_triggered == ["severity>80"]

    def test_weapon_with_medium_high_score_stays_immediate(self):
        """The medium-high band does not downgrade Immediate."""
        decision = decide(fields(score=60, risks=["weapon"]))
        assert decision.route == "Immediate"
        assert decision.rules_triggered == ["weapon_or_injury", "medium_high_severity"]

    def test_injury_overrides_critical_escalation(self):
        decision = decide(fields(score=90, risks=["injury"]))
        assert decision.route == "Immediate"
        assert decision.rules_triggered == ["severity>80", "weapon_or_injury"]

    def test_medium_high_band_routes_to_review(self):
        assert decide(fields(score=51)).route == "Review"
        assert decide(fields(score=80)).route == "Review"
        assert decide(fields(score=81)).route == "Escalate"

    def test_distressed_harassment_overrides_everything(self):
        decision = decide(fields(score=70, incident_type="harassment", emotion="distressed", risks=["weapon"]))
        assert decision.route == "Escalate"
        assert decision.rules_triggered == [
            "weapon_or_injury",
            "medium_high_severity",
            "distressed_harassment",
        ]

    def test_distressed_only_applies_to_harassment(self):
        decision = decide(fields(score=20, incident_type="accident", emotion="distressed"))
        assert decision.route == "LogOnly"
        assert decision.rules_triggered == ["low_severity"]

    def test_low_severity_defaults_to_log_only(self):
        decision = decide(fields(score=50))
        assert decision.route == "LogOnly"
        assert decision.rules_triggered == ["low_severity"]

    def test_low_severity_not_listed_when_route_changed(self):
        decision = decide(fields(score=10, risks=["injury"]))
        assert decision.route == "Immediate"
        assert decision.rules_triggered == ["weapon_or_injury"]

    def test_decision_is_deterministic(self):
        sample = fields(score=77, incident_type="harassment", emotion="distressed")
        assert decide(sample) == decide(sample)

    def test_every_score_gets_a_route_and_a_rule(self):
        for score in range(0, 101):
            decision = decide(fields(score=score))
            assert decision.route in ("LogOnly", "Review", "Escalate")
            assert decision.rules_triggered


class NeedsHumanReviewTests(SimpleTestCase):
    """Test needs_human_review()."""

    def test_high_and_critical_labels_need_review(self):
        assert needs_human_review(fields(score=51), ReviewOutcome()) is True
        assert needs_human_review(fields(score=95), ReviewOutcome()) is True

    def test_low_severity_passing_review_does_not(self):
        assert needs_human_review(fields(score=40), ReviewOutcome()) is False

    def test_failed_review_needs_review(self):
        assert needs_human_review(fields(score=10), ReviewOutcome(overall_passed=False)) is True

    def test_legal_considerations_need_review(self):
        review = ReviewOutcome(legal_considerations=["Possible liability"])
        assert needs_human_review(fields(score=10), review) is True

    def test_legacy_threshold_is_opt_in(self):
        assert needs_human_review(fields(score=0), ReviewOutcome()) is False
        assert needs_human_review(fields(score=0), ReviewOutcome(), legacy_score_threshold=0.7) is True
        assert needs_human_review(fields(score=1), ReviewOutcome(), legacy_score_threshold=0.7) is False
