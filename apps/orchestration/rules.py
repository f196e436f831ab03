"""
Routing rules.

``decide`` is the only place a route is computed. Every run (single, batch,
reprocess, workflow callback) goes through it, so the same fields always
produce the same route and rule list.

Rules are evaluated in order and a match overrides the route chosen by the
previous ones, except that the medium-high band never downgrades Immediate.
All matched rules are listed, including overridden ones.
"""

from __future__ import annotations

from apps.incidents.models import IncidentType, Route, SeverityLabel
from apps.orchestration.dtos import ExtractedFields, ReviewOutcome, RoutingDecision

RULE_SEVERITY_CRITICAL = "severity>80"
RULE_WEAPON_OR_INJURY = "weapon_or_injury"
RULE_MEDIUM_HIGH = "medium_high_severity"
RULE_DISTRESSED_HARASSMENT = "distressed_harassment"
RULE_LOW_SEVERITY = "low_severity"

IMMEDIATE_RISKS = ("weapon", "injury")

HUMAN_REVIEW_LABELS = (SeverityLabel.HIGH, SeverityLabel.CRITICAL)


def decide(fields: ExtractedFields) -> RoutingDecision:
    """Map extracted fields to a route and the rules that fired."""
    score = fields.severity_score
    route = Route.LOG_ONLY.value
    rules: list[str] = []

    if score > 80:
        route = Route.ESCALATE.value
        rules.append(RULE_SEVERITY_CRITICAL)

    if any(risk in fields.risk_indicators for risk in IMMEDIATE_RISKS):
        route = Route.IMMEDIATE.value
        rules.append(RULE_WEAPON_OR_INJURY)

    if 50 < score <= 80:
        if route != Route.IMMEDIATE:
            route = Route.REVIEW.value
        rules.append(RULE_MEDIUM_HIGH)

    if fields.emotion == "distressed" and fields.incident_type == IncidentType.HARASSMENT:
        route = Route.ESCALATE.value
        rules.append(RULE_DISTRESSED_HARASSMENT)

    if score <= 50 and route == Route.LOG_ONLY:
        rules.append(RULE_LOW_SEVERITY)

    return RoutingDecision(route=route, rules_triggered=rules)


def needs_human_review(
    fields: ExtractedFields,
    review: ReviewOutcome,
    legacy_score_threshold: float | None = None,
) -> bool:
    """
    Whether a person must look at the incident before acting on it.

    ``legacy_score_threshold`` re-enables the older "score below threshold"
    term. Scores are 0-100, so a threshold below 1 only matches a score of 0.
    """
    if fields.severity_label in HUMAN_REVIEW_LABELS:
        return True
    if not review.overall_passed:
        return True
    if review.legal_considerations:
        return True
    if legacy_score_threshold is not None and fields.severity_score < legacy_score_threshold:
        return True
    return False
