"""Deterministic collaborators for pipeline tests."""

from __future__ import annotations

import threading
from typing import Any

from apps.credits.ledger import LocalCreditLedger, StaticBalanceSource
from apps.incidents.exceptions import CollaboratorError
from apps.intelligence.providers.base import BaseClassifier
from apps.orchestration.dtos import (
    Entities,
    ExtractedFields,
    ReviewOutcome,
    RoutingValidation,
    Summary,
)
from apps.orchestration.orchestrator import PipelineOrchestrator
from apps.similarity.index import InMemoryIndex

DEFAULT_FIELDS = {
    "incident_type": "infrastructure",
    "severity_score": 30,
    "emotion": "neutral",
    "risk_indicators": [],
}


class StubClassifier(BaseClassifier):
    """
    Returns canned fields keyed by a marker found in the text.

    ``fields_by_marker`` maps a substring of the report to ExtractedFields
    keyword arguments; the first marker found wins. Texts containing any of
    ``fail_markers`` make ``classify`` raise.
    """

    name = "stub"

    def __init__(
        self,
        fields_by_marker: dict[str, dict[str, Any]] | None = None,
        fail_markers: tuple[str, ...] = ("[fail]",),
        review: ReviewOutcome | None = None,
    ):
        self.fields_by_marker = fields_by_marker or {}
        self.fail_markers = fail_markers
        self.review_outcome = review or ReviewOutcome()
        self.classified: list[str] = []
        self._lock = threading.Lock()

    def classify(self, text: str, media_refs: list[str]) -> ExtractedFields:
        with self._lock:
            self.classified.append(text)
        if any(marker in text for marker in self.fail_markers):
            raise CollaboratorError("classifier", "model unavailable")
        values = dict(DEFAULT_FIELDS)
        for marker, overrides in self.fields_by_marker.items():
            if marker in text:
                values.update(overrides)
                break
        return ExtractedFields(
            incident_type=values["incident_type"],
            severity_score=values["severity_score"],
            entities=Entities(location="Main St"),
            emotion=values["emotion"],
            risk_indicators=list(values["risk_indicators"]),
        )

    def summarize(self, fields: ExtractedFields, text: str) -> Summary:
        return Summary(
            summary=f"{fields.severity_label} {fields.incident_type}: {text[:40]}",
            recommended_actions=["Follow up with reporter"],
            urgency="routine",
        )

    def embed(self, text: str) -> list[float]:
        return [1.0, float(len(text) % 5), 0.5]

    def validate_routing(self, summary: str, route: str, rules: list[str]) -> RoutingValidation:
        return RoutingValidation(agrees_with_routing=True, reasoning="stub")

    def review(self, summary: str, route: str, fields: ExtractedFields) -> ReviewOutcome:
        return self.review_outcome


def make_ledger(balance: int = 100) -> LocalCreditLedger:
    return LocalCreditLedger(balance_source=StaticBalanceSource(balance))


def make_orchestrator(classifier: BaseClassifier | None = None, balance: int = 100, **kwargs) -> PipelineOrchestrator:
    index = kwargs.pop("index", None)
    ledger = kwargs.pop("ledger", None)
    return PipelineOrchestrator(
        classifier=classifier if classifier is not None else StubClassifier(),
        index=index if index is not None else InMemoryIndex(min_score=0.7, top_k=3),
        ledger=ledger if ledger is not None else make_ledger(balance),
        **kwargs,
    )


def payload(text: str = "Broken streetlight on Main St", **extra) -> dict[str, Any]:
    return {"text": text, "submitter": "wallet-a", **extra}
