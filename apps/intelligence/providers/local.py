"""
Local classifier.

Deterministic keyword heuristics that need no network access. Used in
development, in tests, and wherever no AI provider is configured. The same
text always yields the same fields, summary and embedding.
"""

import hashlib
import logging
import math
import re

from apps.incidents.models import IncidentType, Route, Urgency
from apps.intelligence.providers.base import BaseClassifier, assigned_team, vector_size
from apps.orchestration.dtos import (
    Entities,
    ExtractedFields,
    ReviewOutcome,
    RoutingValidation,
    Summary,
)

logger = logging.getLogger(__name__)

TYPE_KEYWORDS = {
    IncidentType.HARASSMENT: ["harass", "bully", "stalk", "threaten", "abuse", "discriminat", "insult"],
    IncidentType.ACCIDENT: ["slip", "fell", "fall", "trip", "crash", "collision", "accident"],
    IncidentType.CYBER: ["phish", "hack", "malware", "password", "breach", "ransomware", "login"],
    IncidentType.INFRASTRUCTURE: ["leak", "outage", "power", "broken", "elevator", "flood", "lighting"],
    IncidentType.MEDICAL: ["faint", "unconscious", "seizure", "allerg", "chest pain", "bleeding", "sick"],
}

BASE_SCORES = {
    IncidentType.HARASSMENT: 45,
    IncidentType.ACCIDENT: 40,
    IncidentType.CYBER: 35,
    IncidentType.INFRASTRUCTURE: 25,
    IncidentType.MEDICAL: 55,
    IncidentType.OTHER: 20,
}

RISK_KEYWORDS = {
    "weapon": ["weapon", "knife", "gun", "firearm", "armed"],
    "injury": ["injur", "bleeding", "hurt", "wound", "fracture"],
    "fire": ["fire", "smoke", "burning"],
    "threat": ["threat", "kill", "attack"],
}

EMOTION_KEYWORDS = [
    ("distressed", ["terrified", "panic", "crying", "distress", "please help", "desperate"]),
    ("fearful", ["afraid", "scared", "fear", "frightened"]),
    ("angry", ["angry", "furious", "outraged", "unacceptable"]),
    ("concerned", ["worried", "concern", "uneasy"]),
    ("calm", ["fyi", "minor", "no rush"]),
]

URGENT_WORDS = ["urgent", "immediately", "emergency", "right now", "asap"]

TYPE_ACTIONS = {
    IncidentType.HARASSMENT: ["Contact the reporting party", "Document statements from witnesses"],
    IncidentType.ACCIDENT: ["Secure the area", "Check on anyone involved"],
    IncidentType.CYBER: ["Reset affected credentials", "Preserve logs for investigation"],
    IncidentType.INFRASTRUCTURE: ["Dispatch maintenance", "Restrict access to the affected area"],
    IncidentType.MEDICAL: ["Dispatch first aid", "Notify health services"],
    IncidentType.OTHER: ["Review incident details"],
}

LEGAL_TERMS = ["lawsuit", "lawyer", "police", "assault", "discriminat", "minor"]

ROUTE_RANK = {
    Route.LOG_ONLY: 0,
    Route.REVIEW: 1,
    Route.ESCALATE: 2,
    Route.IMMEDIATE: 3,
}

LOCATION_RE = re.compile(r"\b(?:in|at|near|outside|inside) (?:the |a |an )?([a-z0-9' -]+)")
LOCATION_STOP_WORDS = {
    "and", "is", "was", "were", "are", "when", "where", "with", "from", "at", "on",
    "around", "today", "yesterday", "tonight", "this", "last", "right", "now",
    "because", "while", "who", "has", "had",
}
TIME_RE = re.compile(
    r"\b(\d{1,2}(?::\d{2})?\s?(?:am|pm)|today|yesterday|tonight|this (?:morning|afternoon|evening)|last night)\b"
)
TOKEN_RE = re.compile(r"[a-z0-9']+")


def _contains_any(text: str, words: list[str]) -> bool:
    return any(word in text for word in words)


def _extract_location(text: str) -> str | None:
    """First place phrase after a locative preposition, up to three words."""
    for match in LOCATION_RE.finditer(text):
        words: list[str] = []
        for word in match.group(1).split():
            if word in LOCATION_STOP_WORDS or word[0].isdigit() or len(words) == 3:
                break
            words.append(word)
        if words:
            return " ".join(words)
    return None


def _score_to_urgency(score: int) -> str:
    if score > 75:
        return Urgency.IMMEDIATE.value
    if score > 50:
        return Urgency.WITHIN_1_HOUR.value
    if score > 25:
        return Urgency.WITHIN_24_HOURS.value
    return Urgency.ROUTINE.value


class LocalClassifier(BaseClassifier):
    """Keyword-based classifier with hashed bag-of-words embeddings."""

    name = "local"
    description = "Offline keyword classifier"

    def __init__(self, dimensions: int | None = None, **kwargs):
        self.dimensions = dimensions or vector_size()

    def classify(self, text: str, media_refs: list[str]) -> ExtractedFields:
        lowered = text.lower()

        incident_type = IncidentType.OTHER
        best_hits = 0
        for candidate, keywords in TYPE_KEYWORDS.items():
            hits = sum(1 for word in keywords if word in lowered)
            if hits > best_hits:
                incident_type, best_hits = candidate, hits

        risks = [name for name, words in RISK_KEYWORDS.items() if _contains_any(lowered, words)]

        emotion = "neutral"
        for candidate, words in EMOTION_KEYWORDS:
            if _contains_any(lowered, words):
                emotion = candidate
                break

        score = BASE_SCORES[incident_type] + 20 * len(risks)
        if emotion in ("distressed", "fearful"):
            score += 10
        if _contains_any(lowered, URGENT_WORDS):
            score += 15
        if media_refs:
            score += 5

        location = _extract_location(lowered)
        when = TIME_RE.search(lowered)

        return ExtractedFields(
            incident_type=incident_type.value,
            severity_score=min(score, 100),
            entities=Entities(
                location=location,
                time=when.group(1) if when else None,
                parties=[],
            ),
            emotion=emotion,
            risk_indicators=risks,
        )

    def summarize(self, fields: ExtractedFields, text: str) -> Summary:
        first_sentence = re.split(r"(?<=[.!?])\s", text.strip(), maxsplit=1)[0][:160]
        actions = list(TYPE_ACTIONS.get(fields.incident_type, TYPE_ACTIONS[IncidentType.OTHER]))
        actions.append(f"Assign to {assigned_team(fields.incident_type, fields.severity_label)}")
        return Summary(
            summary=f"{fields.severity_label} severity {fields.incident_type} incident: {first_sentence}",
            recommended_actions=actions,
            urgency=_score_to_urgency(fields.severity_score),
        )

    def embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimensions
        for token in TOKEN_RE.findall(text.lower()):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % self.dimensions
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]

    def validate_routing(self, summary: str, route: str, rules: list[str]) -> RoutingValidation:
        lowered = summary.lower()
        if lowered.startswith("critical"):
            expected = Route.ESCALATE
        elif lowered.startswith("high"):
            expected = Route.REVIEW
        else:
            expected = Route.LOG_ONLY

        if ROUTE_RANK.get(route, 0) >= ROUTE_RANK[expected]:
            return RoutingValidation(
                agrees_with_routing=True,
                reasoning=f"Route {route} is consistent with rules: {', '.join(rules) or 'none'}",
            )
        return RoutingValidation(
            agrees_with_routing=False,
            override_suggested=True,
            suggested_route=expected.value,
            reasoning=f"Severity suggests at least {expected.value}",
        )

    def review(self, summary: str, route: str, fields: ExtractedFields) -> ReviewOutcome:
        missing = []
        if not fields.entities.location:
            missing.append("location")
        if not fields.entities.time:
            missing.append("time")

        legal = []
        lowered = summary.lower()
        if fields.incident_type == IncidentType.HARASSMENT or _contains_any(lowered, LEGAL_TERMS):
            legal.append("Possible mandatory reporting obligations")

        return ReviewOutcome(
            policy_passed=True,
            policy_notes="Local policy checks passed",
            bias_passed=True,
            missing_information=missing,
            legal_considerations=legal,
            overall_passed=len(missing) < 2,
        )
