"""
Base class for all LLM-backed classifiers.

Prompt construction, JSON response parsing and fallback handling are shared
so every AI provider behaves the same way. Subclasses only implement the SDK
calls: ``_call_api`` for text generation and ``_embed_api`` for embeddings.
"""

import json
import logging
from abc import abstractmethod
from typing import Any, Callable, TypeVar

from django.conf import settings

from apps.incidents.exceptions import CollaboratorError
from apps.intelligence.providers.base import (
    BaseClassifier,
    fallback_embedding,
    fallback_fields,
    fallback_review,
    fallback_summary,
    fallback_validation,
    vector_size,
)
from apps.orchestration.dtos import (
    ExtractedFields,
    ReviewOutcome,
    RoutingValidation,
    Summary,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BaseAIClassifier(BaseClassifier):
    """Base class for LLM-backed classifiers.

    Every public method degrades to a neutral fallback when the provider call
    or the response parsing fails, unless ``fallback_enabled`` is False, in
    which case a CollaboratorError is raised and the run aborts.
    """

    # Subclasses override these
    default_model: str = ""
    default_embedding_model: str = ""
    default_max_tokens: int = 1024
    default_timeout_s: int = 30

    SYSTEM_PROMPT = (
        "You are an incident triage assistant for a campus safety office.\n"
        "You read free-text incident reports and answer strictly in JSON with no "
        "surrounding prose."
    )

    CLASSIFY_PROMPT = (
        "Analyze this incident report and extract structured information.\n\n"
        "Report: {text}\n"
        "{media}\n"
        "Return JSON with this structure:\n"
        '{{"incident_type": "harassment|accident|cyber|infrastructure|medical|other",\n'
        ' "severity_score": 0-100,\n'
        ' "entities": {{"location": string|null, "time": string|null, "parties": [string]}},\n'
        ' "emotion": "calm|concerned|distressed|angry|fearful|neutral",\n'
        ' "risk_indicators": [string]}}\n\n'
        "Severity: 0-25 low, 26-50 medium, 51-75 high, 76-100 critical. "
        "Use risk indicators such as weapon, injury, fire, threat when present."
    )

    SUMMARY_PROMPT = (
        "Summarize this {severity_label} severity {incident_type} incident for a response team.\n\n"
        "Report: {text}\n"
        "Extracted fields: {fields}\n\n"
        'Return JSON: {{"summary": string, "recommended_actions": [string], '
        '"urgency": "immediate|within_1_hour|within_24_hours|routine"}}'
    )

    VALIDATE_PROMPT = (
        "An incident was routed to '{route}' because these rules fired: {rules}.\n"
        "Incident summary: {summary}\n\n"
        'Return JSON: {{"agrees_with_routing": bool, "override_suggested": bool, '
        '"suggested_route": "LogOnly|Review|Escalate|Immediate"|null, '
        '"reasoning": string, "additional_factors": [string]}}'
    )

    REVIEW_PROMPT = (
        "Review this routed incident for policy compliance and bias.\n"
        "Summary: {summary}\n"
        "Route: {route}\n"
        "Fields: {fields}\n\n"
        'Return JSON: {{"policy_compliance": {{"passed": bool, "notes": string}}, '
        '"bias_check": {{"passed": bool, "concerns": [string]}}, '
        '"missing_information": [string], "legal_considerations": [string], '
        '"overall_passed": bool}}'
    )

    def __init__(
        self,
        api_key: str = "",
        model: str = "",
        embedding_model: str = "",
        max_tokens: int = 0,
        timeout_s: int = 0,
        fallback_enabled: bool | None = None,
        **kwargs: Any,
    ) -> None:
        self.api_key = api_key
        self.model = model or self.default_model
        self.embedding_model = embedding_model or self.default_embedding_model
        self.max_tokens = max_tokens or self.default_max_tokens
        self.timeout_s = timeout_s or self.default_timeout_s
        self.fallback_enabled = (
            fallback_enabled
            if fallback_enabled is not None
            else bool(getattr(settings, "INTELLIGENCE_FALLBACK_ENABLED", True))
        )
        self.vector_size = vector_size()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def classify(self, text: str, media_refs: list[str]) -> ExtractedFields:
        media = f"Attached media: {', '.join(media_refs)}" if media_refs else ""
        prompt = self.CLASSIFY_PROMPT.format(text=text, media=media)
        return self._guarded(
            "classify",
            lambda: ExtractedFields.from_dict(self._parse_json(self._call_api(prompt))),
            fallback_fields,
        )

    def summarize(self, fields: ExtractedFields, text: str) -> Summary:
        prompt = self.SUMMARY_PROMPT.format(
            severity_label=fields.severity_label,
            incident_type=fields.incident_type,
            text=text,
            fields=json.dumps(fields.to_dict()),
        )
        return self._guarded(
            "summarize",
            lambda: Summary.from_dict(self._parse_json(self._call_api(prompt))),
            lambda: fallback_summary(fields),
        )

    def embed(self, text: str) -> list[float]:
        return self._guarded("embed", lambda: list(self._embed_api(text)), fallback_embedding)

    def validate_routing(self, summary: str, route: str, rules: list[str]) -> RoutingValidation:
        prompt = self.VALIDATE_PROMPT.format(route=route, rules=", ".join(rules), summary=summary)
        return self._guarded(
            "validate_routing",
            lambda: RoutingValidation.from_dict(self._parse_json(self._call_api(prompt))),
            fallback_validation,
        )

    def review(self, summary: str, route: str, fields: ExtractedFields) -> ReviewOutcome:
        prompt = self.REVIEW_PROMPT.format(
            summary=summary, route=route, fields=json.dumps(fields.to_dict())
        )
        return self._guarded(
            "review",
            lambda: ReviewOutcome.from_dict(self._parse_json(self._call_api(prompt))),
            fallback_review,
        )

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _call_api(self, prompt: str) -> str:
        """Make the generation call and return the response text."""
        ...  # pragma: no cover

    @abstractmethod
    def _embed_api(self, text: str) -> list[float]:
        """Return the embedding vector for ``text``."""
        ...  # pragma: no cover

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _guarded(self, operation: str, call: Callable[[], T], fallback: Callable[[], T]) -> T:
        try:
            return call()
        except Exception as e:
            if not self.fallback_enabled:
                raise CollaboratorError(f"{self.name}.{operation}", str(e)) from e
            logger.error("%s %s failed, using fallback: %s", self.name, operation, e)
            return fallback()

    def _parse_json(self, response: str) -> dict[str, Any]:
        content = response.strip()
        if content.startswith("```"):
            lines = content.split("\n")
            content = "\n".join(lines[1:-1] if lines[-1] == "```" else lines[1:])

        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        return data
