"""
Base classifier interface for intelligence providers.

A classifier extracts structured fields from an incident report, summarizes
it, embeds it for similarity search, sanity-checks a routing decision and
runs the policy/bias review. The neutral fallbacks below are what callers
get when a provider call fails and fallbacks are enabled.
"""

import logging
from abc import ABC, abstractmethod

from django.conf import settings

from apps.incidents.models import IncidentType, SeverityLabel, Urgency
from apps.orchestration.dtos import (
    Entities,
    ExtractedFields,
    ReviewOutcome,
    RoutingValidation,
    Summary,
)

logger = logging.getLogger(__name__)

FALLBACK_ACTIONS = [
    "Review incident details",
    "Assess priority level",
    "Assign to appropriate team",
]

SEVERITY_TEAMS = {
    SeverityLabel.CRITICAL: "Emergency Response Team",
    SeverityLabel.HIGH: "Priority Response Team",
}

TYPE_TEAMS = {
    IncidentType.HARASSMENT: "Student Affairs",
    IncidentType.ACCIDENT: "Safety & Security",
    IncidentType.CYBER: "IT Security Team",
    IncidentType.INFRASTRUCTURE: "Facilities Management",
    IncidentType.MEDICAL: "Health Services",
}

DEFAULT_TEAM = "General Support"


def assigned_team(incident_type: str, severity_label: str) -> str:
    """Pick the owning team; severity outranks category."""
    if severity_label in SEVERITY_TEAMS:
        return SEVERITY_TEAMS[severity_label]
    return TYPE_TEAMS.get(incident_type, DEFAULT_TEAM)


def vector_size() -> int:
    return int(getattr(settings, "SIMILARITY_VECTOR_SIZE", 768))


def fallback_fields() -> ExtractedFields:
    return ExtractedFields(
        incident_type=IncidentType.OTHER.value,
        severity_score=50,
        entities=Entities(),
        emotion="neutral",
        risk_indicators=[],
    )


def fallback_summary(fields: ExtractedFields) -> Summary:
    urgency = Urgency.IMMEDIATE if fields.severity_score > 75 else Urgency.WITHIN_24_HOURS
    return Summary(
        summary=f"{fields.severity_label} severity {fields.incident_type} incident. Review required.",
        recommended_actions=list(FALLBACK_ACTIONS),
        urgency=urgency.value,
    )


def fallback_embedding() -> list[float]:
    return [0.0] * vector_size()


def fallback_validation() -> RoutingValidation:
    return RoutingValidation(
        agrees_with_routing=True,
        override_suggested=False,
        reasoning="Automated validation unavailable",
    )


def fallback_review() -> ReviewOutcome:
    return ReviewOutcome(policy_passed=True, policy_notes="Review completed", bias_passed=True)


class BaseClassifier(ABC):
    """
    Abstract base class for classification providers.

    Implementations may raise; whether a failure is masked by a fallback is
    decided by the provider (see BaseAIClassifier), not by the pipeline.
    """

    name: str = "base"
    description: str = ""

    @abstractmethod
    def classify(self, text: str, media_refs: list[str]) -> ExtractedFields:
        raise NotImplementedError

    @abstractmethod
    def summarize(self, fields: ExtractedFields, text: str) -> Summary:
        raise NotImplementedError

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        raise NotImplementedError

    @abstractmethod
    def validate_routing(self, summary: str, route: str, rules: list[str]) -> RoutingValidation:
        raise NotImplementedError

    @abstractmethod
    def review(self, summary: str, route: str, fields: ExtractedFields) -> ReviewOutcome:
        raise NotImplementedError
